"""Python adapter built on the standard library ``ast`` module."""

from __future__ import annotations

import ast
from typing import List, Sequence

from ..errors import ParseError
from ..types import SyntaxTree, TreeBuilder
from .base import AdapterBase, KindInfo, line_offsets

# Statement fields holding nested statements, in source order.
_BLOCK_FIELDS = ("body", "handlers", "cases", "orelse", "finalbody")

PYTHON_KINDS = {
    "module": KindInfo("module", block_like=True),
    "suite": KindInfo("suite", block_like=True, simpler=(b"pass",)),
    "handlers": KindInfo("handlers", block_like=True),
    "cases": KindInfo("cases", block_like=True),
    "Pass": KindInfo("Pass", leaf=True),
}


class PythonAdapter(AdapterBase):
    """Statements become nodes named after their ast class; bodies become ``suite`` nodes."""

    name = "python"
    extensions = (".py", ".pyi")
    kinds = PYTHON_KINDS

    def parse(self, data: bytes) -> SyntaxTree:
        try:
            module = ast.parse(data)
        except SyntaxError as exc:
            offsets = line_offsets(data)
            offset = None
            if exc.lineno is not None and 0 < exc.lineno <= len(offsets):
                offset = offsets[exc.lineno - 1] + max((exc.offset or 1) - 1, 0)
            raise ParseError(f"SyntaxError: {exc.msg}", offset=offset) from exc
        except ValueError as exc:
            raise ParseError(str(exc)) from exc
        return _StatementWalk(data).build(module)


class _StatementWalk:
    """State of one parse: the buffer, its line offsets and the arena being filled."""

    def __init__(self, data: bytes):
        self.data = data
        self.offsets = line_offsets(data)
        self.builder = TreeBuilder(data)

    def build(self, module: ast.Module) -> SyntaxTree:
        root = self.builder.open("module", 0, None)
        for stmt in module.body:
            self.statement(stmt, root)
        self.builder.close(root, len(self.data))
        return self.builder.build()

    def pos(self, lineno: int, col: int) -> int:
        return self.offsets[lineno - 1] + col

    def start(self, node: ast.AST) -> int:
        start = self.pos(node.lineno, node.col_offset)
        for decorator in getattr(node, "decorator_list", ()):
            expr = self.pos(decorator.lineno, decorator.col_offset)
            at = self.data.rfind(b"@", self.offsets[decorator.lineno - 1], expr)
            start = min(start, at if at != -1 else expr)
        return start

    def end(self, node: ast.AST) -> int:
        return self.pos(node.end_lineno, node.end_col_offset)

    def statement(self, stmt: ast.AST, parent: int) -> None:
        index = self.builder.open(type(stmt).__name__, self.start(stmt), parent)
        self.blocks(stmt, index)
        self.builder.close(index, self.end(stmt))

    def blocks(self, node: ast.AST, parent: int) -> None:
        for field in _BLOCK_FIELDS:
            value = getattr(node, field, None)
            if not isinstance(value, list) or not value:
                continue
            if field in ("handlers", "cases"):
                self.group(field, value, parent)
            else:
                self.suite(value, parent)

    def suite(self, body: Sequence[ast.stmt], parent: int) -> None:
        suite = self.builder.open("suite", self.start(body[0]), parent)
        for stmt in body:
            self.statement(stmt, suite)
        self.builder.close(suite, self.end(body[-1]))

    def group(self, kind: str, clauses: List[ast.AST], parent: int) -> None:
        starts = [self.clause_start(clause) for clause in clauses]
        group = self.builder.open(kind, starts[0], parent)
        for clause, start in zip(clauses, starts):
            index = self.builder.open(type(clause).__name__, start, group)
            self.blocks(clause, index)
            self.builder.close(index, self.end(clause.body[-1]))
        self.builder.close(group, self.end(clauses[-1].body[-1]))

    def clause_start(self, clause: ast.AST) -> int:
        if hasattr(clause, "lineno"):
            return self.pos(clause.lineno, clause.col_offset)
        # match_case carries no position of its own; find the keyword before its pattern.
        pattern_start = self.pos(clause.pattern.lineno, clause.pattern.col_offset)
        keyword = self.data.rfind(b"case", 0, pattern_start)
        return keyword if keyword != -1 else pattern_start


__all__ = ["PYTHON_KINDS", "PythonAdapter"]
