"""Core datatypes for grammar-reduce."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple


@dataclass(frozen=True)
class SyntaxNode:
    """A node of a parsed file, stored in the tree's arena."""

    kind: str
    start: int
    end: int
    children: Tuple[int, ...] = ()
    parent: Optional[int] = None

    @property
    def size(self) -> int:
        return self.end - self.start


@dataclass
class SyntaxTree:
    """Arena of nodes over a byte buffer. The root is always index 0."""

    source: bytes
    nodes: List[SyntaxNode] = field(default_factory=list)

    @property
    def root(self) -> int:
        return 0

    def node(self, index: int) -> SyntaxNode:
        return self.nodes[index]

    def text(self, index: int) -> bytes:
        node = self.nodes[index]
        return self.source[node.start:node.end]

    def children(self, index: int) -> Tuple[int, ...]:
        return self.nodes[index].children

    def walk(self) -> Iterator[int]:
        """Yield node indices in pre-order."""

        if not self.nodes:
            return
        stack = [self.root]
        while stack:
            index = stack.pop()
            yield index
            stack.extend(reversed(self.nodes[index].children))

    def ancestors(self, index: int) -> Iterator[int]:
        parent = self.nodes[index].parent
        while parent is not None:
            yield parent
            parent = self.nodes[parent].parent

    def __len__(self) -> int:
        return len(self.nodes)


class TreeBuilder:
    """Incrementally fills a :class:`SyntaxTree` arena.

    Adapters open a node, add its children, then close it with its final end
    offset. Parent back-indices are set as children are attached.
    """

    def __init__(self, source: bytes):
        self._source = source
        self._kinds: List[str] = []
        self._ranges: List[List[int]] = []
        self._children: List[List[int]] = []
        self._parents: List[Optional[int]] = []

    def open(self, kind: str, start: int, parent: Optional[int]) -> int:
        index = len(self._kinds)
        self._kinds.append(kind)
        self._ranges.append([start, start])
        self._children.append([])
        self._parents.append(parent)
        if parent is not None:
            self._children[parent].append(index)
        return index

    def close(self, index: int, end: int) -> None:
        self._ranges[index][1] = end

    def leaf(self, kind: str, start: int, end: int, parent: Optional[int]) -> int:
        index = self.open(kind, start, parent)
        self.close(index, end)
        return index

    def build(self) -> SyntaxTree:
        nodes = [
            SyntaxNode(
                kind=kind,
                start=start,
                end=end,
                children=tuple(children),
                parent=parent,
            )
            for kind, (start, end), children, parent in zip(
                self._kinds, self._ranges, self._children, self._parents
            )
        ]
        return SyntaxTree(source=self._source, nodes=nodes)


@dataclass(frozen=True)
class ByteEdit:
    """Replace ``source[start:end]`` with ``replacement``."""

    start: int
    end: int
    replacement: bytes = b""

    @property
    def delta(self) -> int:
        return len(self.replacement) - (self.end - self.start)


@dataclass(frozen=True)
class PassCursor:
    """Where the engine is within the pass catalog.

    ``position`` is owned by the pass that produced it. ``partial`` marks a
    cursor restored from a snapshot, whose first sweep does not count toward
    the fixpoint.
    """

    pass_index: int = 0
    path: Optional[str] = None
    position: Optional[Tuple[int, ...]] = None
    partial: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pass_index": self.pass_index,
            "path": self.path,
            "position": list(self.position) if self.position is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PassCursor":
        position = data.get("position")
        return cls(
            pass_index=int(data.get("pass_index", 0)),
            path=data.get("path"),
            position=tuple(int(value) for value in position) if position is not None else None,
            partial=True,
        )


@dataclass(frozen=True)
class EditCandidate:
    """A proposed transformation, tried exactly once."""

    pass_name: str
    path: Optional[str]
    edits: Tuple[ByteEdit, ...]
    cursor: PassCursor
    removed_files: Tuple[str, ...] = ()
    description: str = ""

    def apply_to(self, data: bytes) -> bytes:
        """Splice the (sorted, non-overlapping) edits into ``data``."""

        out = bytearray()
        pos = 0
        for edit in self.edits:
            if edit.start < pos or edit.end < edit.start or edit.end > len(data):
                raise ValueError(f"invalid edit {edit} for buffer of {len(data)} bytes")
            out += data[pos:edit.start]
            out += edit.replacement
            pos = edit.end
        out += data[pos:]
        return bytes(out)


class VerdictStatus(str, Enum):
    REPRODUCES = "reproduces"
    DOES_NOT_REPRODUCE = "does_not_reproduce"
    INCONCLUSIVE = "inconclusive"


@dataclass(frozen=True)
class OracleVerdict:
    """Classified outcome of one oracle invocation."""

    status: VerdictStatus
    reason: Optional[str] = None
    exit_code: Optional[int] = None
    duration: float = 0.0
    output: str = ""

    @property
    def reproduces(self) -> bool:
        return self.status is VerdictStatus.REPRODUCES

    @property
    def inconclusive(self) -> bool:
        return self.status is VerdictStatus.INCONCLUSIVE

    @classmethod
    def from_exit_code(cls, code: int, *, duration: float = 0.0, output: str = "") -> "OracleVerdict":
        status = VerdictStatus.REPRODUCES if code == 0 else VerdictStatus.DOES_NOT_REPRODUCE
        return cls(status=status, exit_code=code, duration=duration, output=output)

    @classmethod
    def inconclusive_because(cls, reason: str, *, duration: float = 0.0) -> "OracleVerdict":
        return cls(status=VerdictStatus.INCONCLUSIVE, reason=reason, duration=duration)


@dataclass
class SourceFile:
    """One tracked file: its accepted bytes and their parse."""

    path: str
    data: bytes
    tree: SyntaxTree
    adapter: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ReductionCounters:
    accepted: int = 0
    rejected: int = 0
    inconclusive: int = 0
    parse_failures: int = 0
    initial_size: int = 0
    started_at: float = field(default_factory=time.time)

    def elapsed(self) -> float:
        return time.time() - self.started_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accepted": self.accepted,
            "rejected": self.rejected,
            "inconclusive": self.inconclusive,
            "parse_failures": self.parse_failures,
            "initial_size": self.initial_size,
            "elapsed": round(self.elapsed(), 3),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReductionCounters":
        """Counters carried over from a snapshot; elapsed time keeps accruing."""

        return cls(
            accepted=int(data.get("accepted", 0)),
            rejected=int(data.get("rejected", 0)),
            inconclusive=int(data.get("inconclusive", 0)),
            parse_failures=int(data.get("parse_failures", 0)),
            initial_size=int(data.get("initial_size", 0)),
            started_at=time.time() - float(data.get("elapsed", 0.0)),
        )


@dataclass(frozen=True)
class SnapshotRecord:
    """Metadata of one persisted snapshot, as found in its ``meta.json``."""

    id: int
    timestamp: float
    root: str
    cursor: PassCursor
    size: int
    files: Dict[str, str]
    removed: Tuple[str, ...] = ()
    counters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "root": self.root,
            "cursor": self.cursor.to_dict(),
            "size": self.size,
            "files": dict(sorted(self.files.items())),
            "removed": sorted(self.removed),
            "counters": self.counters,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SnapshotRecord":
        return cls(
            id=int(data["id"]),
            timestamp=float(data["timestamp"]),
            root=str(data["root"]),
            cursor=PassCursor.from_dict(data.get("cursor") or {}),
            size=int(data["size"]),
            files={str(key): str(value) for key, value in data["files"].items()},
            removed=tuple(data.get("removed", [])),
            counters=dict(data.get("counters", {})),
        )
