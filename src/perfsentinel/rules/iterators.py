from __future__ import annotations

from tree_sitter import Node

from perfsentinel.engine.context import AnalysisContext
from perfsentinel.engine.types import Diagnostic, Fix, Replacement, Severity
from perfsentinel.rules.base import BaseRule, RuleMeta
from perfsentinel.rules.utils import MethodCall, as_method_call
from perfsentinel.rules.visitor import RuleVisitor

_ITER_METHODS = frozenset({"iter", "into_iter"})


class CollectThenIterateRule(BaseRule):
    meta = RuleMeta(
        rule_id="collect-then-iterate",
        name="Collect Then Iterate",
        description="Detects .collect::<Vec<_>>() immediately followed by .iter()/.into_iter()",
        default_severity=Severity.WARNING,
    )

    def check(self, ctx: AnalysisContext) -> list[Diagnostic]:
        return _CollectThenIterateVisitor(ctx, self).run()


class _CollectThenIterateVisitor(RuleVisitor):
    def visit_call_expression(self, node: Node) -> None:
        outer = as_method_call(self.ctx, node)
        if outer is None or outer.name not in _ITER_METHODS:
            return
        inner = as_method_call(self.ctx, outer.receiver)
        if inner is None or inner.name != "collect":
            return
        self.report(
            outer.name_node,
            f"`.collect()` immediately followed by `.{outer.name}()`; remove the intermediate collection",
            suggestion="Remove `.collect::<Vec<_>>().iter()` and continue the iterator chain",
            fix=self._removal_fix(inner, outer),
        )

    def _removal_fix(self, collect: MethodCall, iterate: MethodCall) -> Fix:
        # Cut from the end of the original iterator chain through `.iter()`.
        return Fix(
            description=f"Remove .collect().{iterate.name}() and continue iterator chain",
            replacements=(
                Replacement(
                    path=self.ctx.path,
                    start_byte=collect.receiver.end_byte,
                    end_byte=iterate.call.end_byte,
                    new_text="",
                ),
            ),
        )
