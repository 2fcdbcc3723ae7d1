"""In-memory model of every tracked file, its bytes and its syntax tree."""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from . import types
from .adapters import AdapterRegistry, GrammarAdapter
from .errors import CandidateParseError, LoadError, ParseError


@dataclass
class CandidateBuffers:
    """New bytes (``None`` for removed files) and fresh trees for one candidate."""

    contents: Dict[str, Optional[bytes]]
    trees: Dict[str, types.SyntaxTree]
    size: int = 0

    @property
    def paths(self) -> List[str]:
        return sorted(self.contents)


def discover_files(
    root: Path | str,
    registry: AdapterRegistry,
    *,
    include: Sequence[str] | None = None,
    exclude: Sequence[str] = (),
    skip_dirs: Iterable[Path] = (),
) -> List[str]:
    """List files under *root* to reduce, as sorted POSIX relative paths.

    Without *include* patterns a file is tracked when a grammar adapter other
    than the fallback claims it. Hidden directories are never entered.
    """

    root = Path(root).resolve()
    skipped = [Path(path).resolve() for path in skip_dirs]
    found: List[str] = []
    for path in root.rglob("*"):
        if not path.is_file() or path.is_symlink():
            continue
        rel = path.relative_to(root)
        if any(part.startswith(".") for part in rel.parts[:-1]):
            continue
        resolved = path.resolve()
        if any(resolved == skip or skip in resolved.parents for skip in skipped):
            continue
        rel_posix = rel.as_posix()
        if any(fnmatch.fnmatch(rel_posix, pattern) for pattern in exclude):
            continue
        if include is None:
            if not registry.claims(rel_posix):
                continue
        elif not any(fnmatch.fnmatch(rel_posix, pattern) for pattern in include):
            continue
        found.append(rel_posix)
    return sorted(found)


class SourceTree:
    """Accepted state of the project: one :class:`SourceFile` per tracked path.

    ``apply`` never touches accepted state; only ``commit`` does, and it
    installs freshly parsed trees so no node survives an accept.
    """

    def __init__(
        self,
        root: Path | str,
        files: Mapping[str, types.SourceFile],
        registry: AdapterRegistry,
        removed: Iterable[str] = (),
    ):
        self.root = Path(root)
        self.registry = registry
        self._files: Dict[str, types.SourceFile] = dict(files)
        self.removed: Tuple[str, ...] = tuple(sorted(set(removed)))

    @classmethod
    def load(cls, root: Path | str, paths: Iterable[str], registry: AdapterRegistry) -> "SourceTree":
        root = Path(root)
        contents: Dict[str, bytes] = {}
        for rel in paths:
            try:
                contents[rel] = (root / rel).read_bytes()
            except OSError as exc:
                raise LoadError(f"cannot read {rel}: {exc}") from exc
        return cls.from_contents(root, contents, registry)

    @classmethod
    def from_contents(
        cls,
        root: Path | str,
        contents: Mapping[str, bytes],
        registry: AdapterRegistry,
        removed: Iterable[str] = (),
    ) -> "SourceTree":
        files: Dict[str, types.SourceFile] = {}
        for rel, data in contents.items():
            adapter = registry.select(rel)
            try:
                tree = adapter.parse(data)
            except ParseError as exc:
                raise LoadError(f"{rel} does not parse with the {adapter.name} grammar: {exc}") from exc
            files[rel] = types.SourceFile(path=rel, data=data, tree=tree, adapter=adapter.name)
        return cls(root, files, registry, removed=removed)

    @property
    def paths(self) -> List[str]:
        return sorted(self._files)

    def get(self, path: str) -> types.SourceFile:
        return self._files[path]

    def adapter_for(self, path: str) -> GrammarAdapter:
        return self.registry.get(self._files[path].adapter)

    def size(self) -> int:
        return sum(source.size for source in self._files.values())

    def contents(self) -> Dict[str, bytes]:
        return {path: source.data for path, source in self._files.items()}

    def __len__(self) -> int:
        return len(self._files)

    def __contains__(self, path: object) -> bool:
        return path in self._files

    def reparse(self, path: str, data: bytes) -> types.SyntaxTree:
        adapter = self.adapter_for(path)
        try:
            return adapter.parse(data)
        except ParseError as exc:
            raise CandidateParseError(path, exc) from exc

    def apply(self, candidate: types.EditCandidate) -> CandidateBuffers:
        """Materialise *candidate* in memory and re-parse every file it changes."""

        contents: Dict[str, Optional[bytes]] = {}
        trees: Dict[str, types.SyntaxTree] = {}
        if candidate.path is not None and candidate.edits:
            source = self._files[candidate.path]
            data = candidate.apply_to(source.data)
            trees[candidate.path] = self.reparse(candidate.path, data)
            contents[candidate.path] = data
        for path in candidate.removed_files:
            if path not in self._files:
                raise KeyError(f"cannot remove untracked file {path}")
            contents[path] = None
            trees.pop(path, None)
        size = 0
        for path, source in self._files.items():
            if path in contents:
                size += len(contents[path] or b"")
            else:
                size += source.size
        return CandidateBuffers(contents=contents, trees=trees, size=size)

    def commit(self, buffers: CandidateBuffers) -> None:
        removed = set(self.removed)
        for path, data in buffers.contents.items():
            if data is None:
                del self._files[path]
                removed.add(path)
                continue
            previous = self._files[path]
            self._files[path] = types.SourceFile(
                path=path,
                data=data,
                tree=buffers.trees[path],
                adapter=previous.adapter,
            )
        self.removed = tuple(sorted(removed))


__all__ = ["CandidateBuffers", "SourceTree", "discover_files"]
