from __future__ import annotations

import importlib
import logging
from collections.abc import Iterable
from types import ModuleType
from typing import Any

from perfsentinel.rules.base import BaseRule
from perfsentinel.rules.registry import DuplicateRuleError, RuleRegistry, builtin_rules, validate_rule_id

logger = logging.getLogger(__name__)


class PluginLoadError(RuntimeError):
    """Raised when a configured plugin cannot be imported or doesn't expose rules."""


class PluginRegistry:
    """
    Mutable builder for a rule set that mixes custom and built-in rules.

    Registration order is kept; `freeze()` produces the immutable
    `RuleRegistry` the engine runs.
    """

    def __init__(self) -> None:
        self._rules: dict[str, BaseRule] = {}

    def register(self, rule: BaseRule) -> None:
        rule_id = rule.id()
        validate_rule_id(rule_id)
        if rule_id in self._rules:
            raise DuplicateRuleError(rule_id)
        self._rules[rule_id] = rule

    def register_or_replace(self, rule: BaseRule) -> BaseRule | None:
        """Register `rule`, returning the rule it replaced (if any)."""

        rule_id = rule.id()
        validate_rule_id(rule_id)
        previous = self._rules.get(rule_id)
        self._rules[rule_id] = rule
        return previous

    def get(self, rule_id: str) -> BaseRule | None:
        return self._rules.get(rule_id)

    def has(self, rule_id: str) -> bool:
        return rule_id in self._rules

    def rule_ids(self) -> list[str]:
        return list(self._rules)

    def rules(self) -> list[BaseRule]:
        return list(self._rules.values())

    def with_builtin_rules(self) -> PluginRegistry:
        """Add every built-in rule whose id is not already registered."""

        for rule in builtin_rules():
            if rule.id() in self._rules:
                logger.debug("Custom rule %s overrides the built-in rule", rule.id())
                continue
            self._rules[rule.id()] = rule
        return self

    def freeze(self) -> RuleRegistry:
        return RuleRegistry(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)


def build_registry(plugin_specs: tuple[str, ...] = ()) -> RuleRegistry:
    """Built-in rules plus rules from `plugin_specs`; a plugin may not reuse an id."""

    if not plugin_specs:
        return RuleRegistry.builtin()
    registry = PluginRegistry().with_builtin_rules()
    for rule in load_plugin_rules(plugin_specs):
        try:
            registry.register(rule)
        except (DuplicateRuleError, ValueError) as exc:
            raise PluginLoadError(str(exc)) from exc
    return registry.freeze()


def load_plugin_rules(plugin_specs: tuple[str, ...]) -> list[BaseRule]:
    rules: list[BaseRule] = []
    for raw_spec in plugin_specs:
        spec = raw_spec.strip()
        if not spec:
            continue
        rules.extend(_load_one(spec))
    return rules


def _load_one(spec: str) -> list[BaseRule]:
    module_name, sep, attr = spec.partition(":")
    try:
        module = importlib.import_module(module_name)
    except Exception as exc:  # noqa: BLE001
        raise PluginLoadError(f"Failed to import plugin module {module_name!r}: {exc}") from exc

    if sep:
        try:
            obj: Any = getattr(module, attr)
        except AttributeError as exc:
            raise PluginLoadError(f"Plugin module {module_name!r} has no attribute {attr!r}") from exc
    else:
        obj = module
    rules = list(_extract_rules(obj))
    logger.info("Loaded %d rule(s) from plugin %s", len(rules), spec)
    return rules


def _extract_rules(obj: Any) -> Iterable[BaseRule]:
    if isinstance(obj, ModuleType):
        if hasattr(obj, "perfsentinel_rules"):
            return _extract_rules(obj.perfsentinel_rules)
        if hasattr(obj, "RULES"):
            return _extract_rules(obj.RULES)
        raise PluginLoadError("Plugin module must define `perfsentinel_rules()` or `RULES`.")

    if isinstance(obj, BaseRule):
        return [obj]

    if callable(obj):
        return _extract_rules(obj())

    if isinstance(obj, list | tuple):
        out: list[BaseRule] = []
        for item in obj:
            if not isinstance(item, BaseRule):
                raise PluginLoadError(f"Plugin rules must be BaseRule instances, got: {type(item).__name__}")
            out.append(item)
        return out

    raise PluginLoadError(f"Unsupported plugin export type: {type(obj).__name__}")
