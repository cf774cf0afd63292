from __future__ import annotations

from dataclasses import dataclass, field

from tree_sitter import Node

from perfsentinel.engine.context import AnalysisContext
from perfsentinel.engine.types import Diagnostic, Fix
from perfsentinel.rules.base import BaseRule, diagnostic_at

# Bounds how deep any rule walk descends on adversarially nested input.
MAX_RECURSION_DEPTH = 256

LOOP_NODE_TYPES = frozenset({"for_expression", "while_expression", "loop_expression"})


@dataclass(slots=True)
class TraversalState:
    """
    Loop nesting and recursion depth for a single rule walk.

    Invariant: `0 <= loop_depth <= recursion_depth`. Exits saturate so an
    unbalanced unwind can never push either counter below its floor.
    """

    loop_depth: int = 0
    recursion_depth: int = 0

    def should_bail(self) -> bool:
        return self.recursion_depth >= MAX_RECURSION_DEPTH

    def enter_loop(self) -> None:
        self.loop_depth += 1
        self.recursion_depth += 1

    def exit_loop(self) -> None:
        self.loop_depth = max(0, self.loop_depth - 1)
        self.recursion_depth = max(self.loop_depth, self.recursion_depth - 1)

    def enter_expr(self) -> None:
        self.recursion_depth += 1

    def exit_expr(self) -> None:
        self.recursion_depth = max(self.loop_depth, self.recursion_depth - 1)

    def in_loop(self) -> bool:
        return self.loop_depth > 0


@dataclass
class RuleVisitor:
    """
    Depth-first walk over named nodes with shared loop/recursion bookkeeping.

    Subclasses implement `visit_<node_type>(node)` handlers. A handler that
    returns False stops the walk from descending into that node's children.
    Loop constructs count as loops for their whole subtree.
    """

    ctx: AnalysisContext
    rule: BaseRule
    state: TraversalState = field(default_factory=TraversalState)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    def run(self) -> list[Diagnostic]:
        self.walk(self.ctx.root)
        return self.diagnostics

    def report(
        self,
        node: Node,
        message: str,
        *,
        suggestion: str | None = None,
        fix: Fix | None = None,
    ) -> None:
        self.diagnostics.append(diagnostic_at(self.rule, self.ctx, node, message=message, suggestion=suggestion, fix=fix))

    def walk(self, node: Node) -> None:
        state = self.state
        if state.should_bail():
            return
        is_loop = node.type in LOOP_NODE_TYPES
        if is_loop:
            state.enter_loop()
        else:
            state.enter_expr()
        try:
            handler = getattr(self, f"visit_{node.type}", None)
            if handler is not None and handler(node) is False:
                return
            for child in node.named_children:
                self.walk(child)
        finally:
            if is_loop:
                state.exit_loop()
            else:
                state.exit_expr()
