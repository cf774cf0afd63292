from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from tree_sitter import Node

from perfsentinel.engine.context import AnalysisContext
from perfsentinel.engine.types import Diagnostic, Fix, Severity


@dataclass(frozen=True, slots=True)
class RuleMeta:
    rule_id: str
    name: str
    description: str
    default_severity: Severity


class BaseRule(ABC):
    """
    A single detection pass over one file.

    Rules hold no per-file state: everything mutable lives in the visitor a
    `check` call creates, so one instance can be shared across threads.
    """

    meta: RuleMeta

    def id(self) -> str:
        return self.meta.rule_id

    def name(self) -> str:
        return self.meta.name

    def description(self) -> str:
        return self.meta.description

    def default_severity(self) -> Severity:
        return self.meta.default_severity

    @abstractmethod
    def check(self, ctx: AnalysisContext) -> list[Diagnostic]: ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.meta.rule_id}>"


def diagnostic_at(
    rule: BaseRule,
    ctx: AnalysisContext,
    node: Node,
    *,
    message: str,
    suggestion: str | None = None,
    fix: Fix | None = None,
) -> Diagnostic:
    line, column = ctx.position(node)
    end_line, end_column = ctx.end_position(node)
    return Diagnostic(
        rule_id=rule.meta.rule_id,
        severity=rule.meta.default_severity,
        message=message,
        path=ctx.path,
        line=line,
        column=column,
        end_line=end_line,
        end_column=end_column,
        suggestion=suggestion,
        fix=fix,
    )
