from __future__ import annotations

import threading
from functools import lru_cache
from pathlib import Path

from tree_sitter import Language, Node, Parser, Tree
from tree_sitter_language_pack import get_language

RUST_LANGUAGE = "rust"


class TreeSitterError(RuntimeError):
    """Raised when tree-sitter cannot load the Rust grammar."""


class ParseError(Exception):
    """Raised when a source file does not parse cleanly."""

    def __init__(self, path: Path | None, message: str) -> None:
        self.path = path
        self.message = message
        where = f"{path}: " if path is not None else ""
        super().__init__(f"{where}{message}")


@lru_cache(maxsize=1)
def _rust_language() -> Language:
    try:
        return get_language(RUST_LANGUAGE)
    except (LookupError, ValueError, RuntimeError) as exc:  # pragma: no cover (depends on installed grammars)
        raise TreeSitterError(f"tree-sitter language not available: {RUST_LANGUAGE!r}") from exc


_PARSER_LOCAL = threading.local()


def _get_parser() -> Parser:
    """
    Return a per-thread Parser for the Rust grammar.

    tree-sitter Parser objects are not thread-safe; sharing a single cached
    Parser across threads can lead to crashes or corrupted parse output.
    """

    parser: Parser | None = getattr(_PARSER_LOCAL, "parser", None)
    if parser is None:
        parser = Parser(_rust_language())
        _PARSER_LOCAL.parser = parser
    return parser


def parse_source(source: str | bytes, *, path: Path | None = None) -> Tree:
    """
    Parse Rust source code.

    Raises ParseError when the tree contains syntax errors; the message points
    at the first ERROR or MISSING node.
    """

    data = source.encode("utf-8") if isinstance(source, str) else source
    tree = _get_parser().parse(data)
    root = tree.root_node
    if root.has_error:
        raise ParseError(path, _describe_first_error(root))
    return tree


def _describe_first_error(root: Node) -> str:
    stack = [root]
    while stack:
        node = stack.pop()
        if node.is_missing:
            row, col = node.start_point
            return f"syntax error: missing `{node.type}` at line {row + 1}, column {col + 1}"
        if node.is_error:
            row, col = node.start_point
            return f"syntax error at line {row + 1}, column {col + 1}"
        if node.has_error:
            stack.extend(reversed(node.children))
    return "syntax error"
