from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from tree_sitter import Node, Tree

from perfsentinel.config import normalize_rule_id

IGNORE_MARKER = "perfsentinel-ignore"
ATTRIBUTE_NAMESPACE = "perfsentinel"

# Items whose outer `#[allow(perfsentinel::...)]` covers their whole span.
SUPPRESSIBLE_ITEMS = frozenset(
    {"function_item", "struct_item", "enum_item", "union_item", "trait_item", "impl_item", "mod_item"}
)
_ATTRIBUTE_SIBLINGS = frozenset({"attribute_item", "line_comment", "block_comment"})


@dataclass(frozen=True, slots=True)
class Suppressions:
    """
    Rule suppressions extracted from comments and attributes.

    Supported forms:
    - `// perfsentinel-ignore` or `// perfsentinel-ignore: rule-a, rule-b`
      (suppresses the next line)
    - `#[allow(perfsentinel::rule_name)]` on an item (suppresses the item's lines)
    - `#![allow(perfsentinel::rule_name)]` at file level (suppresses the file)

    A bare `perfsentinel` path, an empty comment list or `all` covers every rule.
    """

    disabled_in_file: frozenset[str]
    disabled_on_line: Mapping[int, frozenset[str]]

    def is_suppressed(self, rule_id: str, *, line: int | None) -> bool:
        normalized_id = normalize_rule_id(rule_id)
        if "all" in self.disabled_in_file or normalized_id in self.disabled_in_file:
            return True
        if line is None:
            return False
        disabled = self.disabled_on_line.get(line)
        if not disabled:
            return False
        return "all" in disabled or normalized_id in disabled


_ALLOW_RE = re.compile(r"^#!?\[\s*allow\s*\((?P<args>.*)\)\s*\]$", re.DOTALL)


def extract_suppressions(source: str, tree: Tree) -> Suppressions:
    disabled_in_file: set[str] = set()
    disabled_on_line: dict[int, set[str]] = {}

    for idx, line in enumerate(source.split("\n"), start=1):
        comment_ids = _parse_comment(line)
        if comment_ids is not None:
            disabled_on_line.setdefault(idx + 1, set()).update(comment_ids)

    source_bytes = source.encode("utf-8")
    for node in _iter_nodes(tree.root_node):
        if node.type == "inner_attribute_item":
            parent = node.parent
            if parent is not None and parent.type == "source_file":
                disabled_in_file.update(_parse_allow(_text(source_bytes, node)))
        elif node.type in SUPPRESSIBLE_ITEMS:
            ids: set[str] = set()
            for attr in _outer_attributes(node):
                ids.update(_parse_allow(_text(source_bytes, attr)))
            if not ids or (node.type == "mod_item" and node.child_by_field_name("body") is None):
                continue
            start = node.start_point[0] + 1
            end = node.end_point[0] + 1
            for line_no in range(start, end + 1):
                disabled_on_line.setdefault(line_no, set()).update(ids)

    frozen = {line: frozenset(ids) for line, ids in disabled_on_line.items()}
    return Suppressions(disabled_in_file=frozenset(disabled_in_file), disabled_on_line=MappingProxyType(frozen))


def _parse_comment(line: str) -> set[str] | None:
    idx = line.find(IGNORE_MARKER)
    if idx < 0:
        return None
    rest = line[idx + len(IGNORE_MARKER) :].lstrip(":").strip()
    if not rest or rest == "all":
        return {"all"}
    ids = {normalize_rule_id(token) for token in rest.split(",")}
    ids.discard("")
    return ids or {"all"}


def _parse_allow(text: str) -> set[str]:
    match = _ALLOW_RE.match(text.strip())
    if match is None:
        return set()
    ids: set[str] = set()
    for raw in match.group("args").split(","):
        segments = [s for s in re.sub(r"\s+", "", raw).split("::") if s]
        if not segments or segments[0] != ATTRIBUTE_NAMESPACE:
            continue
        ids.add(normalize_rule_id(segments[1]) if len(segments) > 1 else "all")
    return ids


def _outer_attributes(item: Node) -> list[Node]:
    """Attributes directly preceding `item` (comments between them are skipped)."""

    attrs: list[Node] = []
    sibling = item.prev_named_sibling
    while sibling is not None and sibling.type in _ATTRIBUTE_SIBLINGS:
        if sibling.type == "attribute_item":
            attrs.append(sibling)
        sibling = sibling.prev_named_sibling
    return attrs


def _iter_nodes(root: Node) -> Iterable[Node]:
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.named_children))


def _text(source_bytes: bytes, node: Node) -> str:
    return source_bytes[node.start_byte : node.end_byte].decode("utf-8", errors="replace")
