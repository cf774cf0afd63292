from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from tree_sitter import Node

from perfsentinel.engine.context import AnalysisContext

# Nodes that start a new item scope; their bodies are not part of the
# enclosing function's control flow.
ITEM_NODE_TYPES = frozenset(
    {
        "function_item",
        "impl_item",
        "trait_item",
        "mod_item",
        "struct_item",
        "enum_item",
        "union_item",
        "const_item",
        "static_item",
        "macro_definition",
    }
)


@dataclass(frozen=True, slots=True)
class MethodCall:
    call: Node
    receiver: Node
    name: str
    name_node: Node
    arguments: Node | None


@dataclass(frozen=True, slots=True)
class PathCall:
    call: Node
    path: str
    function: Node
    name_node: Node
    arguments: Node | None


def _call_target(node: Node) -> Node | None:
    if node.type != "call_expression":
        return None
    func = node.child_by_field_name("function")
    if func is not None and func.type == "generic_function":
        func = func.child_by_field_name("function")
    return func


def as_method_call(ctx: AnalysisContext, node: Node) -> MethodCall | None:
    """Match `receiver.name(args)` (turbofish allowed)."""

    func = _call_target(node)
    if func is None or func.type != "field_expression":
        return None
    receiver = func.child_by_field_name("value")
    name_node = func.child_by_field_name("field")
    if receiver is None or name_node is None:
        return None
    return MethodCall(
        call=node,
        receiver=receiver,
        name=ctx.node_text(name_node),
        name_node=name_node,
        arguments=node.child_by_field_name("arguments"),
    )


def as_path_call(ctx: AnalysisContext, node: Node) -> PathCall | None:
    """Match `a::b::name(args)` or `name(args)`."""

    func = _call_target(node)
    if func is None or func.type not in {"identifier", "scoped_identifier"}:
        return None
    name_node = func.child_by_field_name("name") if func.type == "scoped_identifier" else func
    return PathCall(
        call=node,
        path=normalize_path(ctx.node_text(func)),
        function=func,
        name_node=name_node or func,
        arguments=node.child_by_field_name("arguments"),
    )


def normalize_path(text: str) -> str:
    """
    Drop whitespace and generic arguments from a Rust path.

    `Vec::<u8>::new` and `Vec :: new` both become `Vec::new`.
    """

    out: list[str] = []
    depth = 0
    for ch in text:
        if ch == "<":
            depth += 1
        elif ch == ">":
            depth = max(0, depth - 1)
        elif depth == 0 and not ch.isspace():
            out.append(ch)
    path = "".join(out)
    while "::::" in path:
        path = path.replace("::::", "::")
    return path.strip(":")


def path_ends_with(path: str, suffix: str) -> bool:
    """True when `path` ends with `suffix` on a `::` segment boundary."""

    return path == suffix or path.endswith("::" + suffix)


def argument_nodes(arguments: Node | None) -> list[Node]:
    if arguments is None:
        return []
    return [child for child in arguments.named_children if child.type not in {"line_comment", "block_comment"}]


def macro_name(ctx: AnalysisContext, node: Node) -> str | None:
    if node.type != "macro_invocation":
        return None
    name = node.child_by_field_name("macro")
    if name is None:
        return None
    return normalize_path(ctx.node_text(name)).rsplit("::", 1)[-1]


def is_async_function(node: Node) -> bool:
    if node.type != "function_item":
        return False
    for child in node.children:
        if child.type == "function_modifiers" and any(tok.type == "async" for tok in child.children):
            return True
    return False


def await_keyword(node: Node) -> Node:
    """The `await` token of an await_expression (falls back to the node itself)."""

    for child in reversed(node.children):
        if child.type == "await":
            return child
    return node


def unwrap_parens(node: Node) -> Node:
    while node.type == "parenthesized_expression" and node.named_child_count:
        node = node.named_children[0]
    return node


def identifier_name(ctx: AnalysisContext, node: Node | None) -> str | None:
    """Name bound by a simple pattern: `x`, `mut x`, `ref x`."""

    if node is None:
        return None
    if node.type == "identifier":
        return ctx.node_text(node)
    if node.type in {"mut_pattern", "ref_pattern"}:
        for child in node.named_children:
            if child.type == "identifier":
                return ctx.node_text(child)
    return None


def receiver_chain(node: Node) -> Iterable[Node]:
    """
    Walk down a method/field/try/await chain starting at `node`.

    `a.b().c()?.await` yields every link from the outermost expression to `a`.
    """

    current: Node | None = node
    while current is not None:
        yield current
        current = unwrap_parens(current)
        if current.type == "call_expression":
            func = _call_target(current)
            if func is not None and func.type == "field_expression":
                current = func.child_by_field_name("value")
            else:
                current = None
        elif current.type == "field_expression":
            current = current.child_by_field_name("value")
        elif current.type == "reference_expression":
            current = current.child_by_field_name("value")
        elif current.type in {"try_expression", "await_expression"}:
            current = current.named_children[0] if current.named_child_count else None
        else:
            current = None
