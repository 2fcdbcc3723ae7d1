"""Oracle execution: run the external test driver and classify its outcome."""

from __future__ import annotations

import subprocess
import tempfile
import threading
import time
from pathlib import Path
from typing import IO, Optional

import psutil

from .errors import OracleSpawnError, OracleTimeout
from .types import OracleVerdict


def resolve_driver(driver: str | Path) -> str:
    """Absolute path for a driver given as a file, else the name for a PATH lookup."""

    path = Path(driver)
    if path.exists():
        return str(path.resolve())
    return str(driver)


class OracleRunner:
    """Run the driver with ``cwd=root`` and no stdin.

    Exit code 0 means the bug reproduces and any other code means it does not.
    A spawn failure, timeout or cancellation gives an inconclusive verdict, and
    the runner counts how many of those happened in a row.
    """

    def __init__(
        self,
        *,
        timeout: Optional[float] = None,
        inconclusive_abort_threshold: Optional[int] = None,
        poll_interval: float = 0.05,
        output_limit: int = 4000,
    ):
        self.timeout = timeout
        self.inconclusive_abort_threshold = inconclusive_abort_threshold
        self.poll_interval = poll_interval
        self.output_limit = output_limit
        self.consecutive_inconclusive = 0
        self.invocations = 0

    @property
    def threshold_exceeded(self) -> bool:
        if self.inconclusive_abort_threshold is None:
            return False
        return self.consecutive_inconclusive > self.inconclusive_abort_threshold

    def run(
        self,
        root: str | Path,
        driver: str | Path,
        cancel: Optional[threading.Event] = None,
    ) -> OracleVerdict:
        self.invocations += 1
        started = time.monotonic()
        with tempfile.TemporaryFile() as output:
            try:
                proc = self._spawn(root, driver, output)
                verdict = self._wait(proc, output, started, cancel)
            except (OracleSpawnError, OracleTimeout) as exc:
                verdict = OracleVerdict.inconclusive_because(str(exc), duration=time.monotonic() - started)
        if verdict.inconclusive:
            self.consecutive_inconclusive += 1
        else:
            self.consecutive_inconclusive = 0
        return verdict

    def _spawn(self, root: str | Path, driver: str | Path, output: IO[bytes]) -> subprocess.Popen:
        try:
            return subprocess.Popen(
                [str(driver)],
                cwd=str(root),
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as exc:
            raise OracleSpawnError(f"cannot start driver {driver}: {exc}") from exc

    def _wait(
        self,
        proc: subprocess.Popen,
        output: IO[bytes],
        started: float,
        cancel: Optional[threading.Event],
    ) -> OracleVerdict:
        deadline = started + self.timeout if self.timeout else None
        while True:
            try:
                code = proc.wait(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.is_set():
                    self._kill(proc)
                    return OracleVerdict.inconclusive_because(
                        "cancelled", duration=time.monotonic() - started
                    )
                if deadline is not None and time.monotonic() >= deadline:
                    self._kill(proc)
                    raise OracleTimeout(f"driver exceeded {self.timeout}s timeout")
        return OracleVerdict.from_exit_code(
            code,
            duration=time.monotonic() - started,
            output=self._tail(output),
        )

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        """Kill the driver and everything it spawned."""

        try:
            children = psutil.Process(proc.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            children = []
        for child in children:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                pass
        proc.kill()
        proc.wait()

    def _tail(self, output: IO[bytes]) -> str:
        output.seek(0, 2)
        size = output.tell()
        output.seek(max(0, size - self.output_limit))
        return output.read().decode("utf-8", errors="replace")


__all__ = ["OracleRunner", "resolve_driver"]
