"""Per-run event log and artefacts for reduction runs.

Every engine transition, trial verdict and snapshot outcome is appended to
``<base_dir>/<run_id>/events.ndjson``. With streaming on, a compact line per
event also goes to stdout, and problem events go to stderr.
"""

from __future__ import annotations

import json
import os
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

STREAM_ENV = "GRAMMAR_REDUCE_LOG_STREAM"

# Keys worth showing on a streamed line, in display order.
ECHO_KEYS = ("state", "pass_name", "path", "committed", "size", "id", "reason")
PROBLEM_KINDS = {"snapshot.failed"}


def _truthy(val: str | None) -> bool:
    return (val or "").strip().lower() in {"1", "true", "yes", "on", "enable", "enabled"}


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RunLogger:
    """Event log of one reduction run, plus named JSON and text artefacts."""

    def __init__(self, base_dir: str | Path = ".reduce_runs", run_id: str | None = None, *, stream: bool | None = None):
        self.base_dir = Path(base_dir)
        if run_id is None:
            run_id = f"{time.strftime('%Y%m%d-%H%M%S')}-{os.getpid()}"
        self.run_dir = self.base_dir / run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)
        if stream is None:
            stream = _truthy(os.environ.get(STREAM_ENV))
        self._stream = bool(stream)
        self._events_path = self.run_dir / "events.ndjson"

    @property
    def events_path(self) -> Path:
        return self._events_path

    def log_json(self, name: str, data: Any) -> Path:
        path = self.run_dir / f"{name}.json"
        path.write_text(json.dumps(data, indent=2, sort_keys=True))
        self.log_event("file.write", name=name, path=str(path))
        return path

    def log_text(self, name: str, text: str) -> Path:
        path = self.run_dir / f"{name}.txt"
        path.write_text(text)
        self.log_event("file.write", name=name, path=str(path))
        return path

    def log_event(self, kind: str, /, **data: Any) -> None:
        now = time.time()
        record = {"ts": now, "ts_iso": _iso(now), "kind": kind, "data": data}
        with self._events_path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(record, separators=(",", ":"), default=str) + "\n")
        if not self._stream:
            return
        fields = " ".join(f"{key}={data[key]}" for key in ECHO_KEYS if key in data)
        line = f"[{record['ts_iso']}] {kind} {fields}".strip()
        problem = kind in PROBLEM_KINDS or data.get("state") == "failed"
        print(line, file=sys.stderr if problem else sys.stdout, flush=True)

    def events(self, kind: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        """Read back logged events, oldest first, optionally of one kind only."""

        if not self._events_path.exists():
            return
        with self._events_path.open(encoding="utf-8") as fh:
            for line in fh:
                record = json.loads(line)
                if kind is None or record["kind"] == kind:
                    yield record


__all__ = ["ECHO_KEYS", "RunLogger", "STREAM_ENV"]
