from __future__ import annotations

from dataclasses import dataclass, field

from tree_sitter import Node

from perfsentinel.engine.context import AnalysisContext
from perfsentinel.engine.types import Diagnostic, Severity
from perfsentinel.rules.base import BaseRule, RuleMeta
from perfsentinel.rules.utils import (
    ITEM_NODE_TYPES,
    argument_nodes,
    as_method_call,
    await_keyword,
    identifier_name,
    is_async_function,
    unwrap_parens,
)
from perfsentinel.rules.visitor import RuleVisitor

# Methods returning a lock guard; they take no arguments, which keeps
# `file.read(&mut buf)` and friends out.
LOCK_METHODS = frozenset({"lock", "try_lock", "read", "try_read", "write", "try_write"})
_UNWRAP_METHODS = frozenset({"unwrap", "expect", "ok"})

# Bodies that do not run as part of the enclosing function's own control flow.
_DETACHED_NODE_TYPES = ITEM_NODE_TYPES | {"closure_expression", "async_block", "macro_invocation"}

_SUGGESTION = (
    "Drop the guard before awaiting, or restructure to avoid holding locks across await points. "
    "Consider using a scope block: `{ let guard = lock.lock(); /* use guard */ }` before the await."
)


def lock_acquisition(ctx: AnalysisContext, node: Node) -> str | None:
    """
    Return the lock method when `node` evaluates to a lock guard.

    Sees through `.unwrap()`, `.expect(..)`, `.ok()`, `?`, `.await` and parentheses.
    """

    current: Node | None = node
    while current is not None:
        current = unwrap_parens(current)
        if current.type in {"try_expression", "await_expression"}:
            current = current.named_children[0] if current.named_child_count else None
            continue
        call = as_method_call(ctx, current)
        if call is None:
            return None
        if call.name in LOCK_METHODS and not argument_nodes(call.arguments):
            return call.name
        if call.name in _UNWRAP_METHODS:
            current = call.receiver
            continue
        return None
    return None


class LockAcrossAwaitRule(BaseRule):
    meta = RuleMeta(
        rule_id="lock-across-await",
        name="Lock Held Across Await",
        description="Detects MutexGuard/RwLockGuard held across .await points, which can cause deadlocks",
        default_severity=Severity.ERROR,
    )

    def check(self, ctx: AnalysisContext) -> list[Diagnostic]:
        return _LockAcrossAwaitVisitor(ctx, self).run()


@dataclass
class _LockAcrossAwaitVisitor(RuleVisitor):
    _reported: set[int] = field(default_factory=set)

    def visit_function_item(self, node: Node) -> None:
        if not is_async_function(node):
            return
        body = node.child_by_field_name("body")
        if body is not None:
            self._analyze_block(body, {})

    def _analyze_block(self, block: Node, inherited: dict[str, None]) -> None:
        state = self.state
        if state.should_bail():
            return
        state.enter_expr()
        try:
            # Insertion-ordered so messages list guards in declaration order.
            active = dict(inherited)
            for stmt in block.named_children:
                if stmt.type in _DETACHED_NODE_TYPES:
                    continue
                if stmt.type == "let_declaration":
                    value = stmt.child_by_field_name("value")
                    if value is None:
                        continue
                    self._scan(value, active)
                    if lock_acquisition(self.ctx, value) is not None:
                        name = identifier_name(self.ctx, stmt.child_by_field_name("pattern"))
                        if name is not None:
                            active.pop(name, None)
                            active[name] = None
                    alternative = stmt.child_by_field_name("alternative")
                    if alternative is not None:
                        self._scan(alternative, active)
                    continue
                self._scan(stmt, active)
        finally:
            state.exit_expr()

    def _scan(self, node: Node, active: dict[str, None]) -> None:
        """Report suspension points under `node`; nested blocks get their own scope."""

        stack = [node]
        while stack:
            current = stack.pop()
            kind = current.type
            if kind in _DETACHED_NODE_TYPES:
                continue
            if kind == "block":
                self._analyze_block(current, active)
                continue
            if kind == "await_expression" and active:
                self._report(current, active)
            stack.extend(reversed(current.named_children))

    def _report(self, await_node: Node, active: dict[str, None]) -> None:
        base = await_node.named_children[0] if await_node.named_child_count else None
        if base is not None and lock_acquisition(self.ctx, base) is not None:
            return
        keyword = await_keyword(await_node)
        if keyword.start_byte in self._reported:
            return
        self._reported.add(keyword.start_byte)

        guards = list(active)
        plural = "s" if len(guards) > 1 else ""
        names = "`, `".join(guards)
        self.report(
            keyword,
            f"Lock guard{plural} `{names}` held across `.await` point; this can cause deadlocks",
            suggestion=_SUGGESTION,
        )
