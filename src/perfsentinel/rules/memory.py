from __future__ import annotations

from tree_sitter import Node

from perfsentinel.engine.context import AnalysisContext
from perfsentinel.engine.types import Diagnostic, Severity
from perfsentinel.rules.base import BaseRule, RuleMeta
from perfsentinel.rules.utils import as_method_call, as_path_call, path_ends_with
from perfsentinel.rules.visitor import RuleVisitor

_REGEX_CONSTRUCTORS = ("Regex::new", "RegexBuilder::new", "RegexSet::new")


class CloneInLoopRule(BaseRule):
    meta = RuleMeta(
        rule_id="clone-in-hot-loop",
        name="Clone in Hot Loop",
        description="Detects .clone() calls on heap types inside loops",
        default_severity=Severity.WARNING,
    )

    def check(self, ctx: AnalysisContext) -> list[Diagnostic]:
        return _CloneVisitor(ctx, self).run()


class _CloneVisitor(RuleVisitor):
    def visit_call_expression(self, node: Node) -> None:
        if not self.state.in_loop():
            return
        call = as_method_call(self.ctx, node)
        if call is not None and call.name == "clone":
            self.report(
                call.name_node,
                "`.clone()` called inside loop; consider borrowing or moving the clone outside",
                suggestion="Use a reference or move the clone outside the loop",
            )


class RegexInLoopRule(BaseRule):
    meta = RuleMeta(
        rule_id="regex-in-loop",
        name="Regex Compilation in Loop",
        description="Detects Regex::new() inside loops; use lazy_static or once_cell instead",
        default_severity=Severity.WARNING,
    )

    def check(self, ctx: AnalysisContext) -> list[Diagnostic]:
        return _RegexVisitor(ctx, self).run()


class _RegexVisitor(RuleVisitor):
    def visit_call_expression(self, node: Node) -> None:
        if not self.state.in_loop():
            return
        call = as_path_call(self.ctx, node)
        if call is None or not any(path_ends_with(call.path, ctor) for ctor in _REGEX_CONSTRUCTORS):
            return
        self.report(
            call.name_node,
            "`Regex::new()` called inside loop; compile regex once outside",
            suggestion="Use `std::sync::LazyLock` or `once_cell::sync::Lazy` to compile the regex once",
        )
