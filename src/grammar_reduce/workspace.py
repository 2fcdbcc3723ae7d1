"""Workspace materialisation: put candidate bytes on disk and take them back."""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import List, Mapping, Optional

from .errors import FilesystemWriteError, InvariantViolation


class Workspace:
    """The real project directory the oracle runs in.

    At most one candidate is on disk at a time. ``write`` records which paths
    it touched; ``restore`` puts the accepted bytes of exactly those paths
    back, and ``settle`` forgets them once the candidate has been accepted.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self._pending: List[str] = []

    @property
    def dirty(self) -> bool:
        return bool(self._pending)

    def write(self, contents: Mapping[str, Optional[bytes]]) -> None:
        """Write candidate buffers; ``None`` removes the file."""

        if self._pending:
            raise InvariantViolation("a candidate is already materialised")
        self._pending = sorted(contents)
        for rel in self._pending:
            data = contents[rel]
            if data is None:
                self._remove(rel)
            else:
                self._write_file(rel, data)

    def restore(self, accepted: Mapping[str, bytes]) -> None:
        """Rewrite the accepted bytes of every path the last ``write`` touched."""

        for rel in self._pending:
            data = accepted.get(rel)
            if data is None:
                self._remove(rel)
            else:
                self._write_file(rel, data)
        self._pending = []

    def settle(self) -> None:
        self._pending = []

    def install(self, contents: Mapping[str, bytes], removed: List[str] | tuple = ()) -> None:
        """Make the directory hold exactly *contents* for tracked paths (used on resume)."""

        for rel in sorted(contents):
            self._write_file(rel, contents[rel])
        for rel in removed:
            self._remove(rel)
        self._pending = []

    def read(self, rel: str) -> bytes:
        return (self.root / rel).read_bytes()

    def _write_file(self, rel: str, data: bytes) -> None:
        target = self.root / rel
        tmp = target.with_name(f".{target.name}.grammar-reduce.tmp")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            if target.exists():
                shutil.copymode(target, tmp)
            os.replace(tmp, target)
        except OSError as exc:
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                pass
            raise FilesystemWriteError(f"cannot write {target}: {exc}") from exc

    def _remove(self, rel: str) -> None:
        try:
            (self.root / rel).unlink(missing_ok=True)
        except OSError as exc:
            raise FilesystemWriteError(f"cannot remove {self.root / rel}: {exc}") from exc


__all__ = ["Workspace"]
