"""Reduction pass catalog.

Every pass lazily yields :class:`~grammar_reduce.types.EditCandidate` objects
against the current accepted trees, most aggressive first. Passes are
stateless: after an accepted candidate the engine asks the same pass again
from that candidate's cursor position, against the freshly parsed tree.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Type

from . import types
from .adapters.base import line_offsets
from .source_tree import SourceTree

Position = Optional[Tuple[int, ...]]


def chunk_plan(n: int, start: Optional[Tuple[int, int]] = None) -> Iterator[Tuple[int, int]]:
    """Yield ``(size, offset)`` chunks over a run of *n* items.

    The whole run comes first, then halves, quarters and so on down to single
    items. *start* resumes at a given ``(size, offset)``; the size is clamped
    to the (possibly shorter) run.
    """

    if n <= 0:
        return
    size, offset = n, 0
    if start is not None:
        size, offset = max(1, min(start[0], n)), max(0, start[1])
    while True:
        while offset < n:
            yield size, offset
            offset += size
        if size == 1:
            return
        size = (size + 1) // 2
        offset = 0


class ReductionPass:
    """Base class. ``scope`` is ``"file"`` or ``"project"``.

    ``prepare`` and ``cleanup`` bracket every oracle run on a candidate of the
    pass, for passes that must save or drop state in the project root (build
    caches, generated files) around a trial.
    """

    name = "pass"
    scope = "file"

    def prepare(self, root: Path) -> None:
        pass

    def cleanup(self, root: Path, reproduced: bool) -> None:
        pass

    def candidates(
        self,
        model: SourceTree,
        path: Optional[str],
        pass_index: int,
        position: Position = None,
    ) -> Iterator[types.EditCandidate]:  # pragma: no cover - interface
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class RemoveFilesPass(ReductionPass):
    """Delete whole tracked files from the project, never the last one."""

    name = "remove-files"
    scope = "project"

    def candidates(self, model, path, pass_index, position=None):
        paths = model.paths
        start = (position[0], position[1]) if position and len(position) == 2 else None
        for size, offset in chunk_plan(len(paths), start):
            chunk = tuple(paths[offset:offset + size])
            if len(chunk) >= len(paths) or not sum(model.get(p).size for p in chunk):
                continue
            yield types.EditCandidate(
                pass_name=self.name,
                path=None,
                edits=(),
                removed_files=chunk,
                cursor=types.PassCursor(pass_index, None, (size, offset)),
                description=f"remove {len(chunk)} file(s): {', '.join(chunk)}",
            )


class DeleteSiblingsPass(ReductionPass):
    """Hierarchical removal of sibling runs under every block-like node.

    A chunk's byte range runs from its first node up to the start of the
    next sibling, so separators and whitespace between siblings go with it.
    """

    name = "delete-siblings"

    def candidates(self, model, path, pass_index, position=None):
        source = model.get(path)
        tree = source.tree
        adapter = model.adapter_for(path)
        groups = [
            index
            for index in tree.walk()
            if tree.children(index) and adapter.kind(tree.node(index).kind).block_like
        ]
        first_group, resume = 0, None
        if position and len(position) == 3:
            first_group, resume = position[0], (position[1], position[2])
        for group in range(first_group, len(groups)):
            parent = groups[group]
            children = tree.children(parent)
            n = len(children)
            for size, offset in chunk_plan(n, resume if group == first_group else None):
                last = min(offset + size, n) - 1
                start = tree.node(children[offset]).start
                if last + 1 < n:
                    end = tree.node(children[last + 1]).start
                else:
                    end = tree.node(children[last]).end
                if end <= start:
                    continue
                yield types.EditCandidate(
                    pass_name=self.name,
                    path=path,
                    edits=(types.ByteEdit(start, end),),
                    cursor=types.PassCursor(pass_index, path, (group, size, offset)),
                    description=(
                        f"delete {last - offset + 1} of {n} children of "
                        f"{tree.node(parent).kind} in {path} [{start}:{end}]"
                    ),
                )


class ReplaceSimplerPass(ReductionPass):
    """Replace nodes with a strictly shorter equivalent of the same kind.

    Chunks are planned over every replaceable node in pre-order; inside one
    chunk a node nested in another replaced node is subsumed by it.
    """

    name = "replace-simpler"

    def candidates(self, model, path, pass_index, position=None):
        source = model.get(path)
        tree = source.tree
        adapter = model.adapter_for(path)
        targets: List[Tuple[int, bytes]] = []
        for index in tree.walk():
            text = tree.text(index)
            if not text.strip():
                continue
            for replacement in adapter.kind(tree.node(index).kind).simpler:
                if len(replacement) < len(text):
                    targets.append((index, replacement))
                    break
        start = (position[0], position[1]) if position and len(position) == 2 else None
        for size, offset in chunk_plan(len(targets), start):
            chunk = targets[offset:offset + size]
            chosen = {index for index, _ in chunk}
            edits = [
                types.ByteEdit(tree.node(index).start, tree.node(index).end, replacement)
                for index, replacement in chunk
                if not any(ancestor in chosen for ancestor in tree.ancestors(index))
            ]
            edits.sort(key=lambda edit: edit.start)
            yield types.EditCandidate(
                pass_name=self.name,
                path=path,
                edits=tuple(edits),
                cursor=types.PassCursor(pass_index, path, (size, offset)),
                description=f"simplify {len(edits)} node(s) in {path}",
            )


class RemoveLinesPass(ReductionPass):
    """Hierarchical removal of line ranges, whatever grammar the file has.

    Each line takes its newline with it. The re-parse of the candidate still
    decides whether the result is structurally valid.
    """

    name = "remove-lines"

    def candidates(self, model, path, pass_index, position=None):
        data = model.get(path).data
        starts = [offset for offset in line_offsets(data) if offset < len(data)]
        ends = starts[1:] + [len(data)]
        start = (position[0], position[1]) if position and len(position) == 2 else None
        for size, offset in chunk_plan(len(starts), start):
            last = min(offset + size, len(starts)) - 1
            yield types.EditCandidate(
                pass_name=self.name,
                path=path,
                edits=(types.ByteEdit(starts[offset], ends[last]),),
                cursor=types.PassCursor(pass_index, path, (size, offset)),
                description=f"remove lines {offset + 1}-{last + 1} of {path}",
            )


class DiscardWhitespacePass(ReductionPass):
    """Trim end-of-line whitespace and drop empty lines."""

    name = "discard-whitespace"

    def candidates(self, model, path, pass_index, position=None):
        data = model.get(path).data
        kept = [line.rstrip() for line in data.split(b"\n")]
        reduced = b"".join(line + b"\n" for line in kept if line)
        if len(reduced) >= len(data):
            return
        yield types.EditCandidate(
            pass_name=self.name,
            path=path,
            edits=(types.ByteEdit(0, len(data), reduced),),
            cursor=types.PassCursor(pass_index, path, (0,)),
            description=f"discard whitespace in {path}",
        )


PASS_TYPES: Dict[str, Type[ReductionPass]] = {
    RemoveFilesPass.name: RemoveFilesPass,
    DeleteSiblingsPass.name: DeleteSiblingsPass,
    ReplaceSimplerPass.name: ReplaceSimplerPass,
    RemoveLinesPass.name: RemoveLinesPass,
    DiscardWhitespacePass.name: DiscardWhitespacePass,
}

DEFAULT_PASSES: Tuple[str, ...] = tuple(PASS_TYPES)


def build_catalog(names: Sequence[str] | None = None, *, file_removal: bool = True) -> List[ReductionPass]:
    """Instantiate passes in priority order."""

    selected = list(names) if names else list(DEFAULT_PASSES)
    unknown = [name for name in selected if name not in PASS_TYPES]
    if unknown:
        raise ValueError(f"Unknown reduction pass(es): {', '.join(unknown)}")
    if not file_removal:
        selected = [name for name in selected if name != RemoveFilesPass.name]
    return [PASS_TYPES[name]() for name in selected]


__all__ = [
    "DEFAULT_PASSES",
    "DeleteSiblingsPass",
    "DiscardWhitespacePass",
    "PASS_TYPES",
    "ReductionPass",
    "RemoveFilesPass",
    "RemoveLinesPass",
    "ReplaceSimplerPass",
    "build_catalog",
    "chunk_plan",
]
