"""
N+1 query detection for Diesel, SQLx and SeaORM code.

Unambiguous query methods (`fetch_all`, `load`, `find_by_id`, ...) are flagged
whenever they run inside a loop. Names that collide with std APIs
(`first`, `insert`, `find`, ...) are flagged only when the receiver chain looks
like a query builder or an argument looks like a connection handle.
"""

from __future__ import annotations

from tree_sitter import Node

from perfsentinel.engine.context import AnalysisContext
from perfsentinel.engine.types import Diagnostic, Severity
from perfsentinel.rules.base import BaseRule, RuleMeta
from perfsentinel.rules.utils import (
    argument_nodes,
    as_method_call,
    as_path_call,
    normalize_path,
    path_ends_with,
    unwrap_parens,
)
from perfsentinel.rules.visitor import RuleVisitor

SQLX_QUERY_FUNCTIONS = (
    "query",
    "query_as",
    "query_scalar",
    "query_as_with",
    "query_scalar_with",
    "query_with",
)
SQLX_FETCH_METHODS = frozenset({"fetch", "fetch_one", "fetch_all", "fetch_optional", "fetch_many"})
DIESEL_OPERATIONS = ("insert_into", "update", "delete")
DIESEL_UNAMBIGUOUS_METHODS = frozenset({"load", "get_result", "get_results"})
DIESEL_AMBIGUOUS_METHODS = frozenset({"first", "execute"})
SEAORM_UNAMBIGUOUS_METHODS = frozenset({"find_by_id", "find_related", "find_with_related", "find_also_related"})
SEAORM_AMBIGUOUS_METHODS = frozenset({"one", "all", "find"})
AMBIGUOUS_OPERATIONS = frozenset({"insert", "update", "delete", "save", "execute"})

DB_CONNECTION_NAMES = ("db", "conn", "connection", "pool", "database", "tx", "transaction")
_DB_BUILDER_METHODS = frozenset(
    {
        "query",
        "query_as",
        "query_scalar",
        "find",
        "find_by_id",
        "filter",
        "select",
        "bind",
        "execute",
        "fetch",
        "table",
        "from",
        "into",
    }
)
_DB_FUNCTION_NAMES = frozenset(
    {
        "find_by_id",
        "find",
        "insert",
        "update",
        "delete",
        "insert_into",
        "query",
        "query_as",
        "query_scalar",
    }
)

_SQLX_HINT = "Consider using WHERE ... IN or ANY() for batch fetching."
_DIESEL_HINT = "Consider using .filter(column.eq_any(&ids)) for batch operations."
_DIESEL_INSERT_HINT = "Consider batch operations with insert_into().values(&vec_of_values)."
_SEAORM_HINT = "Consider using Entity::find().filter(Column::Id.is_in(ids)) for batch fetching."
_BATCH_HINT = "Consider using Entity::insert_many() or batch operations."


def has_db_connection_arg(ctx: AnalysisContext, arguments: Node | None) -> bool:
    """True when an argument is `db`, `&pool`, `conn`, ... (substring match)."""

    for arg in argument_nodes(arguments):
        arg = unwrap_parens(arg)
        if arg.type == "reference_expression":
            value = arg.child_by_field_name("value")
            if value is None:
                continue
            arg = value
        if arg.type != "identifier":
            continue
        name = ctx.node_text(arg).lower()
        if any(candidate in name for candidate in DB_CONNECTION_NAMES):
            return True
    return False


def looks_like_db_operation(ctx: AnalysisContext, receiver: Node) -> bool:
    """True when `receiver` reads like a query builder chain or a DB entity path."""

    current: Node | None = receiver
    while current is not None:
        node = unwrap_parens(current)
        if node.type in {"try_expression", "await_expression"}:
            current = node.named_children[0] if node.named_child_count else None
            continue
        if node.type in {"identifier", "scoped_identifier"}:
            path = normalize_path(ctx.node_text(node))
            return "Entity" in path or "users" in path or "table" in path

        method = as_method_call(ctx, node)
        if method is not None:
            if method.name in _DB_BUILDER_METHODS:
                return True
            current = method.receiver
            continue

        call = as_path_call(ctx, node)
        if call is not None:
            path = call.path
            if any(marker in path for marker in ("sqlx", "query", "diesel", "Entity")):
                return True
            return path.rsplit("::", 1)[-1] in _DB_FUNCTION_NAMES
        return False
    return False


class NPlusOneQueryRule(BaseRule):
    meta = RuleMeta(
        rule_id="n-plus-one-query",
        name="N+1 Query Detection",
        description="Detects database queries inside loops that could be batched into a single query",
        default_severity=Severity.ERROR,
    )

    def check(self, ctx: AnalysisContext) -> list[Diagnostic]:
        return _NPlusOneVisitor(ctx, self).run()


class _NPlusOneVisitor(RuleVisitor):
    def visit_call_expression(self, node: Node) -> None:
        if not self.state.in_loop():
            return
        path_call = as_path_call(self.ctx, node)
        if path_call is not None:
            self._check_path_call(path_call.path, path_call.name_node)
            return
        method = as_method_call(self.ctx, node)
        if method is not None:
            self._check_method_call(method.name, method.name_node, method.receiver, method.arguments)

    def _check_path_call(self, path: str, name_node: Node) -> None:
        for func in SQLX_QUERY_FUNCTIONS:
            if path_ends_with(path, func):
                self._report(name_node, f"sqlx::{func}", _SQLX_HINT)
                break
        for op in DIESEL_OPERATIONS:
            if path_ends_with(path, op):
                self._report(name_node, f"diesel::{op}", _DIESEL_INSERT_HINT)
                break

    def _check_method_call(self, name: str, name_node: Node, receiver: Node, arguments: Node | None) -> None:
        if name in SQLX_FETCH_METHODS:
            self._report(name_node, name, _SQLX_HINT)
            return
        if name in DIESEL_UNAMBIGUOUS_METHODS:
            self._report(name_node, name, _DIESEL_HINT)
            return
        if name in SEAORM_UNAMBIGUOUS_METHODS:
            self._report(name_node, name, _SEAORM_HINT)
            return

        # `Vec::first()`, `HashMap::insert()`, `Iterator::find()` share these names.
        if not (looks_like_db_operation(self.ctx, receiver) or has_db_connection_arg(self.ctx, arguments)):
            return
        if name in DIESEL_AMBIGUOUS_METHODS:
            self._report(name_node, name, _DIESEL_HINT)
        elif name in SEAORM_AMBIGUOUS_METHODS:
            self._report(name_node, name, _SEAORM_HINT)
        elif name in AMBIGUOUS_OPERATIONS:
            self._report(name_node, name, _BATCH_HINT)

    def _report(self, node: Node, pattern: str, hint: str) -> None:
        self.report(
            node,
            f"Database query `{pattern}` inside loop (N+1 query pattern). {hint}",
            suggestion="Batch queries outside the loop using WHERE IN, ANY(), or join operations",
        )
