"""Fallback adapter: a file is a flat run of lines."""

from __future__ import annotations

from ..types import SyntaxTree, TreeBuilder
from .base import AdapterBase, KindInfo

LINE_KINDS = {
    "file": KindInfo("file", block_like=True),
    "line": KindInfo("line", leaf=True),
}


class LinesAdapter(AdapterBase):
    name = "lines"
    extensions = ()
    kinds = LINE_KINDS

    def supports_path(self, path: str) -> bool:
        return True

    def parse(self, data: bytes) -> SyntaxTree:
        builder = TreeBuilder(data)
        root = builder.open("file", 0, None)
        start = 0
        while start < len(data):
            newline = data.find(b"\n", start)
            end = len(data) if newline == -1 else newline
            builder.leaf("line", start, end, root)
            start = end + 1
        builder.close(root, len(data))
        return builder.build()
