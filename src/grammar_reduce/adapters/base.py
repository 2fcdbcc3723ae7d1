"""Grammar adapter protocol and the per-kind capability table."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Mapping, Protocol, Tuple

from ..types import SyntaxTree


@dataclass(frozen=True)
class KindInfo:
    """What the pass catalog may do with nodes of one kind.

    ``block_like`` nodes have children forming a removable sibling run.
    ``simpler`` lists replacement bytes, most preferred first.
    """

    name: str
    leaf: bool = False
    block_like: bool = False
    simpler: Tuple[bytes, ...] = ()


UNKNOWN_KIND = KindInfo(name="unknown")


class GrammarAdapter(Protocol):
    name: str
    extensions: Tuple[str, ...]
    kinds: Mapping[str, KindInfo]

    def supports_path(self, path: str) -> bool:  # pragma: no cover - protocol
        ...

    def kind(self, kind: str) -> KindInfo:  # pragma: no cover - protocol
        ...

    def parse(self, data: bytes) -> SyntaxTree:  # pragma: no cover - protocol
        ...

    def serialize(self, tree: SyntaxTree) -> bytes:  # pragma: no cover - protocol
        ...


class AdapterBase:
    """Shared behaviour: extension matching, kind lookup and byte serialisation."""

    name: str = "base"
    extensions: Tuple[str, ...] = ()
    kinds: Mapping[str, KindInfo] = {}

    def supports_path(self, path: str) -> bool:
        return PurePosixPath(path).suffix.lower() in self.extensions

    def kind(self, kind: str) -> KindInfo:
        return self.kinds.get(kind, UNKNOWN_KIND)

    def serialize(self, tree: SyntaxTree) -> bytes:
        # Trees are views over their source buffer; edits are spliced as bytes.
        return tree.source


def line_offsets(data: bytes) -> list[int]:
    """Byte offset of the start of every line (1-based line ``n`` at index ``n - 1``)."""

    offsets = [0]
    pos = data.find(b"\n")
    while pos != -1:
        offsets.append(pos + 1)
        pos = data.find(b"\n", pos + 1)
    return offsets


__all__ = ["AdapterBase", "GrammarAdapter", "KindInfo", "UNKNOWN_KIND", "line_offsets"]
