"""Rate-limited, bounded-retention snapshots of the best accepted state.

Layout of the snapshot directory::

    000001/
        meta.json          # SnapshotRecord
        files/<relpath>    # accepted contents of every tracked file
    000002/
        ...

A snapshot is staged in a hidden ``.<id>.partial`` directory and renamed into
place, so a crash never leaves a half-written numbered snapshot behind. Each
snapshot stands alone; none reads another.
"""

from __future__ import annotations

import json
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

import blake3

from .errors import ResumeError, SnapshotWriteError
from .types import SnapshotRecord

if TYPE_CHECKING:  # pragma: no cover
    from .engine import ReductionState

META_FILE = "meta.json"
FILES_DIR = "files"


def digest(data: bytes) -> str:
    return f"blake3:{blake3.blake3(data).hexdigest()}"


@dataclass
class ResumePoint:
    """A snapshot loaded back from disk."""

    record: SnapshotRecord
    contents: Dict[str, bytes]
    path: Path


class SnapshotManager:
    """Writes numbered snapshots under *directory*.

    *cleanup* is called with each staged snapshot directory before it is
    published, and may drop or add files next to the tracked copies.
    """

    def __init__(
        self,
        directory: str | Path,
        *,
        interval: float = 10.0,
        retention: int = 10,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        cleanup: Optional[Callable[[Path], None]] = None,
    ):
        if retention < 1:
            raise ValueError("snapshot retention must be at least 1")
        self.directory = Path(directory)
        self.interval = interval
        self.retention = retention
        self._clock = clock
        self._wall_clock = wall_clock
        self._cleanup = cleanup
        self._last_written: Optional[float] = None
        self._last_id = 0
        self.written: List[int] = []

    def existing_ids(self) -> List[int]:
        if not self.directory.exists():
            return []
        return sorted(
            int(entry.name)
            for entry in self.directory.iterdir()
            if entry.is_dir() and entry.name.isdigit()
        )

    def maybe_snapshot(self, state: "ReductionState") -> Optional[SnapshotRecord]:
        """Persist *state* unless the last snapshot is younger than the interval.

        Only the first snapshot of a manager skips the interval check.

        Returns the written record, or ``None`` when rate-limited. Raises
        :class:`SnapshotWriteError` on I/O failure; the caller decides to go on.
        """

        now = self._clock()
        if self._last_written is not None and now - self._last_written < self.interval:
            return None
        record = self._write(state)
        self._last_written = now
        self.written.append(record.id)
        self._evict()
        return record

    def _allocate_id(self) -> int:
        existing = self.existing_ids()
        self._last_id = max([self._last_id, *existing]) + 1
        return self._last_id

    def _write(self, state: "ReductionState") -> SnapshotRecord:
        staging: Optional[Path] = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            snap_id = self._allocate_id()
            name = f"{snap_id:06d}"
            staging = self.directory / f".{name}.partial"
            if staging.exists():
                shutil.rmtree(staging)
            files_dir = staging / FILES_DIR
            files_dir.mkdir(parents=True)
            digests: Dict[str, str] = {}
            for rel, data in sorted(state.model.contents().items()):
                target = files_dir / rel
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
                digests[rel] = digest(data)
            record = SnapshotRecord(
                id=snap_id,
                timestamp=self._wall_clock(),
                root=str(state.model.root),
                cursor=state.cursor,
                size=state.model.size(),
                files=digests,
                removed=state.model.removed,
                counters=state.counters.to_dict(),
            )
            (staging / META_FILE).write_text(json.dumps(record.to_dict(), indent=2, sort_keys=True))
            if self._cleanup is not None:
                self._cleanup(staging)
            os.rename(staging, self.directory / name)
        except OSError as exc:
            if staging is not None:
                shutil.rmtree(staging, ignore_errors=True)
            raise SnapshotWriteError(f"cannot write snapshot in {self.directory}: {exc}") from exc
        return record

    def _evict(self) -> None:
        ids = self.existing_ids()
        for snap_id in ids[: max(0, len(ids) - self.retention)]:
            try:
                shutil.rmtree(self.directory / f"{snap_id:06d}")
            except OSError as exc:
                raise SnapshotWriteError(f"cannot evict snapshot {snap_id}: {exc}") from exc

    def load(self, snap_id: int) -> ResumePoint:
        path = self.directory / f"{snap_id:06d}"
        try:
            raw = json.loads((path / META_FILE).read_text())
            record = SnapshotRecord.from_dict(raw)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise ResumeError(f"snapshot {path} has no readable metadata: {exc}") from exc
        contents: Dict[str, bytes] = {}
        for rel, expected in record.files.items():
            try:
                data = (path / FILES_DIR / rel).read_bytes()
            except OSError as exc:
                raise ResumeError(f"snapshot {path} is missing {rel}: {exc}") from exc
            if digest(data) != expected:
                raise ResumeError(f"snapshot {path} has a corrupted copy of {rel}")
            contents[rel] = data
        return ResumePoint(record=record, contents=contents, path=path)

    def resume(self) -> ResumePoint:
        """Load the newest intact snapshot."""

        try:
            ids = self.existing_ids()
        except OSError as exc:
            raise ResumeError(f"snapshot directory {self.directory} is unreadable: {exc}") from exc
        problems: List[str] = []
        for snap_id in reversed(ids):
            try:
                point = self.load(snap_id)
            except ResumeError as exc:
                problems.append(str(exc))
                continue
            self._last_id = max(self._last_id, ids[-1])
            return point
        detail = f" ({'; '.join(problems)})" if problems else ""
        raise ResumeError(f"no valid snapshot in {self.directory}{detail}")


__all__ = ["FILES_DIR", "META_FILE", "ResumePoint", "SnapshotManager", "digest"]
