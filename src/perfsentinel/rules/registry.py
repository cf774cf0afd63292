from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from functools import lru_cache
from types import MappingProxyType

from perfsentinel.rules.allocation import (
    FormatInLoopRule,
    HashMapNoCapacityRule,
    MutexLockInLoopRule,
    StringConcatLoopRule,
    StringNoCapacityRule,
    VecNoCapacityRule,
)
from perfsentinel.rules.async_rules import AsyncBlockInAsyncRule, UnboundedChannelRule, UnboundedSpawnRule
from perfsentinel.rules.base import BaseRule, RuleMeta
from perfsentinel.rules.database import NPlusOneQueryRule
from perfsentinel.rules.iterators import CollectThenIterateRule
from perfsentinel.rules.lock_across_await import LockAcrossAwaitRule
from perfsentinel.rules.memory import CloneInLoopRule, RegexInLoopRule

_RULE_ID_RE = re.compile(r"^[a-z][a-z0-9]*(?:-[a-z0-9]+)*$")


class DuplicateRuleError(ValueError):
    """Raised when two rules share an id."""

    def __init__(self, rule_id: str) -> None:
        super().__init__(f"Duplicate rule id: {rule_id}")
        self.rule_id = rule_id


def validate_rule_id(rule_id: str) -> None:
    if not _RULE_ID_RE.match(rule_id):
        raise ValueError(f"Rule id must be lowercase kebab-case: {rule_id!r}")


@lru_cache(maxsize=1)
def builtin_rules() -> tuple[BaseRule, ...]:
    rules: list[BaseRule] = [
        AsyncBlockInAsyncRule(),
        LockAcrossAwaitRule(),
        UnboundedChannelRule(),
        UnboundedSpawnRule(),
        NPlusOneQueryRule(),
        CloneInLoopRule(),
        RegexInLoopRule(),
        CollectThenIterateRule(),
        VecNoCapacityRule(),
        HashMapNoCapacityRule(),
        StringNoCapacityRule(),
        FormatInLoopRule(),
        StringConcatLoopRule(),
        MutexLockInLoopRule(),
    ]
    seen: set[str] = set()
    for rule in rules:
        rule_id = rule.id()
        validate_rule_id(rule_id)
        if rule_id in seen:  # pragma: no cover
            raise DuplicateRuleError(rule_id)
        seen.add(rule_id)
    return tuple(rules)


class RuleRegistry:
    """
    Immutable, ordered collection of rules with lookup by id.

    Built once per run and shared read-only by every worker thread.
    """

    __slots__ = ("_rules", "_by_id")

    def __init__(self, rules: Iterable[BaseRule] = ()) -> None:
        ordered = tuple(rules)
        by_id: dict[str, BaseRule] = {}
        for rule in ordered:
            if rule.id() in by_id:
                raise DuplicateRuleError(rule.id())
            by_id[rule.id()] = rule
        self._rules = ordered
        self._by_id: Mapping[str, BaseRule] = MappingProxyType(by_id)

    @classmethod
    def builtin(cls) -> RuleRegistry:
        return cls(builtin_rules())

    @property
    def rules(self) -> tuple[BaseRule, ...]:
        return self._rules

    def get(self, rule_id: str) -> BaseRule | None:
        return self._by_id.get(rule_id)

    def has(self, rule_id: str) -> bool:
        return rule_id in self._by_id

    def rule_ids(self) -> list[str]:
        return [rule.id() for rule in self._rules]

    def metas(self) -> list[RuleMeta]:
        return [rule.meta for rule in self._rules]

    def __iter__(self) -> Iterator[BaseRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return isinstance(rule_id, str) and rule_id in self._by_id

    def __repr__(self) -> str:
        return f"RuleRegistry({len(self._rules)} rules)"
