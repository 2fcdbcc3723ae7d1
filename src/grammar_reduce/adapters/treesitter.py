"""Adapters backed by tree-sitter grammars (Rust, C, C++, Go, JavaScript, TypeScript).

Only named nodes enter the arena. Punctuation and keywords stay in the
source bytes between them, so a sibling run under a block-like node is the
list of statements, items, arguments or elements it holds. A buffer whose
parse contains an ``ERROR`` or ``MISSING`` node is a :class:`ParseError`.
"""

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Optional, Tuple

import tree_sitter_c
import tree_sitter_cpp
import tree_sitter_go
import tree_sitter_javascript
import tree_sitter_rust
import tree_sitter_typescript
from tree_sitter import Language, Node, Parser

from ..errors import ParseError
from ..types import SyntaxTree, TreeBuilder
from .base import AdapterBase, KindInfo


def kind_table(block_like: Iterable[str], simpler: Mapping[str, bytes]) -> Dict[str, KindInfo]:
    kinds: Dict[str, KindInfo] = {}
    for name in block_like:
        kinds[name] = KindInfo(name, block_like=True, simpler=(simpler[name],) if name in simpler else ())
    for name, replacement in simpler.items():
        if name not in kinds:
            kinds[name] = KindInfo(name, simpler=(replacement,))
    return kinds


RUST_KINDS = kind_table(
    [
        "source_file", "block", "declaration_list", "token_tree", "arguments", "parameters",
        "field_declaration_list", "field_initializer_list", "enum_variant_list", "match_block",
        "array_expression", "tuple_expression", "use_list",
    ],
    {
        "block": b"{}",
        "declaration_list": b"{}",
        "token_tree": b"()",
        "arguments": b"()",
        "array_expression": b"[]",
        "match_block": b"{}",
        "integer_literal": b"0",
        "string_literal": b'""',
    },
)

C_KINDS = kind_table(
    [
        "translation_unit", "compound_statement", "argument_list", "parameter_list",
        "initializer_list", "field_declaration_list", "enumerator_list", "declaration_list",
    ],
    {
        "compound_statement": b"{}",
        "argument_list": b"()",
        "field_declaration_list": b"{}",
        "declaration_list": b"{}",
        "number_literal": b"0",
        "string_literal": b'""',
    },
)

GO_KINDS = kind_table(
    [
        "source_file", "block", "statement_list", "argument_list", "parameter_list",
        "field_declaration_list", "literal_value", "import_spec_list",
    ],
    {
        "block": b"{}",
        "argument_list": b"()",
        "literal_value": b"{}",
        "int_literal": b"0",
        "interpreted_string_literal": b'""',
        "raw_string_literal": b"``",
    },
)

JS_KINDS = kind_table(
    [
        "program", "statement_block", "class_body", "arguments", "formal_parameters",
        "array", "object", "switch_body",
    ],
    {
        "statement_block": b"{}",
        "class_body": b"{}",
        "arguments": b"()",
        "array": b"[]",
        "object": b"{}",
        "number": b"0",
        "string": b'""',
        "template_string": b"``",
    },
)


def _first_error(node: Node) -> Optional[int]:
    stack = [node]
    while stack:
        current = stack.pop()
        if current.is_error or current.is_missing:
            return current.start_byte
        if current.has_error:
            stack.extend(reversed(current.children))
    return None


class TreeSitterAdapter(AdapterBase):
    """Adapter for one tree-sitter language."""

    def __init__(
        self,
        name: str,
        extensions: Tuple[str, ...],
        language: Language,
        kinds: Mapping[str, KindInfo],
    ):
        self.name = name
        self.extensions = extensions
        self.kinds = kinds
        self.language = language
        self._parser = Parser(language)

    def parse(self, data: bytes) -> SyntaxTree:
        tree = self._parser.parse(data)
        root = tree.root_node
        if root.has_error:
            offset = _first_error(root)
            raise ParseError(f"{self.name} syntax error at byte {offset}", offset=offset)

        builder = TreeBuilder(data)
        top = builder.open(root.type, 0, None)
        builder.close(top, len(data))
        cursor = tree.walk()
        if not cursor.goto_first_child():
            return builder.build()
        # parents[-1] is the arena parent of the node under the cursor
        parents = [top]
        while True:
            node = cursor.node
            index = parents[-1]
            if node.is_named:
                index = builder.leaf(node.type, node.start_byte, node.end_byte, parents[-1])
            if cursor.goto_first_child():
                parents.append(index)
                continue
            while not cursor.goto_next_sibling():
                cursor.goto_parent()
                parents.pop()
                if not parents:
                    return builder.build()


def rust_adapter() -> TreeSitterAdapter:
    return TreeSitterAdapter("rust", (".rs",), Language(tree_sitter_rust.language()), RUST_KINDS)


def c_adapter() -> TreeSitterAdapter:
    return TreeSitterAdapter("c", (".c", ".h"), Language(tree_sitter_c.language()), C_KINDS)


def cpp_adapter() -> TreeSitterAdapter:
    return TreeSitterAdapter(
        "cpp", (".cc", ".cpp", ".cxx", ".hh", ".hpp", ".hxx"), Language(tree_sitter_cpp.language()), C_KINDS
    )


def go_adapter() -> TreeSitterAdapter:
    return TreeSitterAdapter("go", (".go",), Language(tree_sitter_go.language()), GO_KINDS)


def javascript_adapter() -> TreeSitterAdapter:
    return TreeSitterAdapter(
        "javascript", (".js", ".mjs", ".cjs", ".jsx"), Language(tree_sitter_javascript.language()), JS_KINDS
    )


def typescript_adapter() -> TreeSitterAdapter:
    return TreeSitterAdapter(
        "typescript", (".ts", ".mts", ".cts"), Language(tree_sitter_typescript.language_typescript()), JS_KINDS
    )


def tsx_adapter() -> TreeSitterAdapter:
    return TreeSitterAdapter("tsx", (".tsx",), Language(tree_sitter_typescript.language_tsx()), JS_KINDS)


def builtin_adapters() -> Tuple[TreeSitterAdapter, ...]:
    return (
        rust_adapter(),
        c_adapter(),
        cpp_adapter(),
        go_adapter(),
        javascript_adapter(),
        typescript_adapter(),
        tsx_adapter(),
    )


__all__ = [
    "C_KINDS",
    "GO_KINDS",
    "JS_KINDS",
    "RUST_KINDS",
    "TreeSitterAdapter",
    "builtin_adapters",
    "c_adapter",
    "cpp_adapter",
    "go_adapter",
    "javascript_adapter",
    "kind_table",
    "rust_adapter",
    "tsx_adapter",
    "typescript_adapter",
]
