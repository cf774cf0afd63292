from __future__ import annotations

import pytest

from perfsentinel.engine.context import AnalysisContext
from perfsentinel.engine.types import Diagnostic, Severity
from perfsentinel.rules.base import BaseRule, RuleMeta
from perfsentinel.rules.memory import CloneInLoopRule
from perfsentinel.rules.plugins import PluginRegistry
from perfsentinel.rules.registry import DuplicateRuleError, RuleRegistry, builtin_rules, validate_rule_id

EXPECTED_BUILTIN_IDS = [
    "async-block-in-async",
    "lock-across-await",
    "unbounded-channel",
    "unbounded-spawn",
    "n-plus-one-query",
    "clone-in-hot-loop",
    "regex-in-loop",
    "collect-then-iterate",
    "vec-no-capacity",
    "hashmap-no-capacity",
    "string-no-capacity",
    "format-in-loop",
    "string-concat-loop",
    "mutex-in-loop",
]


class _CustomRule(BaseRule):
    def __init__(self, rule_id: str) -> None:
        self.meta = RuleMeta(
            rule_id=rule_id,
            name="Custom",
            description="Custom test rule",
            default_severity=Severity.INFO,
        )

    def check(self, ctx: AnalysisContext) -> list[Diagnostic]:
        return []


def test_builtin_registry_lists_every_rule_in_order() -> None:
    registry = RuleRegistry.builtin()
    assert registry.rule_ids() == EXPECTED_BUILTIN_IDS
    assert len(registry) == 14
    assert registry.rules == builtin_rules()
    assert [m.rule_id for m in registry.metas()] == EXPECTED_BUILTIN_IDS


def test_registry_lookup() -> None:
    registry = RuleRegistry.builtin()
    rule = registry.get("clone-in-hot-loop")
    assert isinstance(rule, CloneInLoopRule)
    assert registry.has("clone-in-hot-loop")
    assert "clone-in-hot-loop" in registry
    assert registry.get("missing") is None
    assert 42 not in registry


def test_registry_rejects_duplicate_ids() -> None:
    with pytest.raises(DuplicateRuleError) as excinfo:
        RuleRegistry([_CustomRule("my-rule"), _CustomRule("my-rule")])
    assert excinfo.value.rule_id == "my-rule"


@pytest.mark.parametrize("rule_id", ["Bad", "bad_id", "-leading", "trailing-", "double--dash", ""])
def test_validate_rule_id_rejects_non_kebab_case(rule_id: str) -> None:
    with pytest.raises(ValueError):
        validate_rule_id(rule_id)


def test_plugin_registry_register_and_replace() -> None:
    registry = PluginRegistry()
    first = _CustomRule("my-rule")
    registry.register(first)
    with pytest.raises(DuplicateRuleError):
        registry.register(_CustomRule("my-rule"))

    second = _CustomRule("my-rule")
    assert registry.register_or_replace(second) is first
    assert registry.get("my-rule") is second
    assert registry.register_or_replace(_CustomRule("other-rule")) is None
    assert registry.rule_ids() == ["my-rule", "other-rule"]


def test_custom_rule_overrides_builtin_with_the_same_id() -> None:
    custom = _CustomRule("clone-in-hot-loop")
    registry = PluginRegistry()
    registry.register(custom)
    frozen = registry.with_builtin_rules().freeze()

    assert len(frozen) == 14
    assert frozen.get("clone-in-hot-loop") is custom
    assert frozen.rule_ids()[0] == "clone-in-hot-loop"
