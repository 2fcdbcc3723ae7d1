import os
import sys
import threading
from pathlib import Path
from typing import Callable, Dict, Optional

import pytest

from grammar_reduce import types


def read_project(root: Path) -> Dict[str, bytes]:
    contents: Dict[str, bytes] = {}
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root)
        if path.is_file() and not any(part.startswith(".") for part in rel.parts):
            contents[rel.as_posix()] = path.read_bytes()
    return contents


class FakeOracle:
    """In-process stand-in for OracleRunner that evaluates a predicate on the files on disk."""

    def __init__(
        self,
        predicate: Callable[[Dict[str, bytes]], bool],
        *,
        cancel_after: Optional[int] = None,
        inconclusive_abort_threshold: Optional[int] = None,
    ):
        self.predicate = predicate
        self.cancel_after = cancel_after
        self.inconclusive_abort_threshold = inconclusive_abort_threshold
        self.consecutive_inconclusive = 0
        self.invocations = 0
        self.seen = []

    @property
    def threshold_exceeded(self) -> bool:
        if self.inconclusive_abort_threshold is None:
            return False
        return self.consecutive_inconclusive > self.inconclusive_abort_threshold

    def run(self, root, driver, cancel: Optional[threading.Event] = None) -> types.OracleVerdict:
        self.invocations += 1
        if self.cancel_after is not None and self.invocations > self.cancel_after and cancel is not None:
            cancel.set()
        if cancel is not None and cancel.is_set():
            self.consecutive_inconclusive += 1
            return types.OracleVerdict.inconclusive_because("cancelled")
        contents = read_project(Path(root))
        self.seen.append(contents)
        self.consecutive_inconclusive = 0
        return types.OracleVerdict.from_exit_code(0 if self.predicate(contents) else 1)


@pytest.fixture()
def make_driver(tmp_path: Path):
    """Write an executable Python driver script and return its path."""

    counter = {"n": 0}

    def _make(body: str) -> Path:
        counter["n"] += 1
        script = tmp_path / f"driver{counter['n']}.py"
        script.write_text(f"#!{sys.executable}\nimport sys\nfrom pathlib import Path\n{body}\n")
        os.chmod(script, 0o755)
        return script

    return _make
