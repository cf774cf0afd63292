from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar

from tree_sitter import Node

from perfsentinel.engine.context import AnalysisContext
from perfsentinel.engine.types import Diagnostic, Fix, Replacement, Severity
from perfsentinel.rules.base import BaseRule, RuleMeta
from perfsentinel.rules.utils import (
    argument_nodes,
    as_method_call,
    as_path_call,
    macro_name,
    path_ends_with,
    unwrap_parens,
)
from perfsentinel.rules.visitor import RuleVisitor

# Larger right-hand sides get a diagnostic without a machine fix.
MAX_FIX_TEXT_SIZE = 10_000


# ---------------------------------------------------------------------------
# vec-no-capacity / hashmap-no-capacity / string-no-capacity
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CapacityPattern:
    type_name: str
    grow_methods: frozenset[str]
    verb: str


def _bound_identifier(pattern: Node | None) -> Node | None:
    if pattern is None:
        return None
    if pattern.type == "identifier":
        return pattern
    if pattern.type == "mut_pattern":
        for child in pattern.named_children:
            if child.type == "identifier":
                return child
    return None


class _CapacityRule(BaseRule):
    pattern: ClassVar[CapacityPattern]

    def check(self, ctx: AnalysisContext) -> list[Diagnostic]:
        return _CapacityVisitor(ctx, self, pattern=self.pattern).run()


@dataclass
class _CapacityVisitor(RuleVisitor):
    pattern: CapacityPattern | None = None
    # variable name -> identifier node of its `let`
    tracked: dict[str, Node] = field(default_factory=dict)

    def visit_let_declaration(self, node: Node) -> None:
        assert self.pattern is not None
        value = node.child_by_field_name("value")
        if value is None:
            return
        call = as_path_call(self.ctx, unwrap_parens(value))
        if call is None or argument_nodes(call.arguments):
            return
        if not path_ends_with(call.path, f"{self.pattern.type_name}::new"):
            return
        ident = _bound_identifier(node.child_by_field_name("pattern"))
        if ident is not None:
            self.tracked[self.ctx.node_text(ident)] = ident

    def visit_call_expression(self, node: Node) -> None:
        assert self.pattern is not None
        if not self.state.in_loop():
            return
        call = as_method_call(self.ctx, node)
        if call is None or call.name not in self.pattern.grow_methods:
            return
        receiver = unwrap_parens(call.receiver)
        if receiver.type != "identifier":
            return
        name = self.ctx.node_text(receiver)
        declaration = self.tracked.pop(name, None)
        if declaration is None:
            return
        type_name = self.pattern.type_name
        self.report(
            declaration,
            f"`{name}` created with `{type_name}::new()` then {self.pattern.verb} in loop; "
            f"use `{type_name}::with_capacity()` instead",
            suggestion=f"Pre-allocate with `{type_name}::with_capacity(expected_size)`",
        )


class VecNoCapacityRule(_CapacityRule):
    meta = RuleMeta(
        rule_id="vec-no-capacity",
        name="Vec Without Capacity",
        description="Detects Vec::new() followed by push in loop; use with_capacity instead",
        default_severity=Severity.WARNING,
    )
    pattern = CapacityPattern("Vec", frozenset({"push"}), "pushed to")


class HashMapNoCapacityRule(_CapacityRule):
    meta = RuleMeta(
        rule_id="hashmap-no-capacity",
        name="HashMap Without Capacity",
        description="Detects HashMap::new() followed by insert in loop; use with_capacity instead",
        default_severity=Severity.WARNING,
    )
    pattern = CapacityPattern("HashMap", frozenset({"insert"}), "inserted to")


class StringNoCapacityRule(_CapacityRule):
    meta = RuleMeta(
        rule_id="string-no-capacity",
        name="String Without Capacity",
        description="Detects String::new() followed by push_str in loop; use with_capacity instead",
        default_severity=Severity.WARNING,
    )
    pattern = CapacityPattern("String", frozenset({"push_str", "push", "write_str"}), "appended to")


# ---------------------------------------------------------------------------
# format-in-loop
# ---------------------------------------------------------------------------


class FormatInLoopRule(BaseRule):
    meta = RuleMeta(
        rule_id="format-in-loop",
        name="Format in Loop",
        description="Detects format!() inside loops; each call allocates a new String",
        default_severity=Severity.WARNING,
    )

    def check(self, ctx: AnalysisContext) -> list[Diagnostic]:
        return _FormatVisitor(ctx, self).run()


class _FormatVisitor(RuleVisitor):
    def visit_macro_invocation(self, node: Node) -> None:
        if not self.state.in_loop() or macro_name(self.ctx, node) != "format":
            return
        self.report(
            node.child_by_field_name("macro") or node,
            "`format!()` called inside loop; allocates a new String each iteration",
            suggestion="Consider using `write!()` to a reusable buffer or moving format outside loop",
        )


# ---------------------------------------------------------------------------
# string-concat-loop
# ---------------------------------------------------------------------------

_NUMERIC_LITERALS = frozenset({"integer_literal", "float_literal", "char_literal", "boolean_literal"})
_STRING_LITERALS = frozenset({"string_literal", "raw_string_literal"})
_STRING_METHODS = frozenset({"to_string", "to_owned", "format"})


def _is_definitely_numeric(node: Node) -> bool:
    while node.type in {"reference_expression", "parenthesized_expression", "unary_expression"}:
        inner = node.named_children[-1] if node.named_child_count else None
        if inner is None:
            return False
        node = inner
    return node.type in _NUMERIC_LITERALS


def _is_definitely_string(ctx: AnalysisContext, node: Node) -> bool:
    # Explicit stack: `a + b + c` nests one binary_expression per operand.
    pending = [node]
    while pending:
        current = unwrap_parens(pending.pop())
        if current.type in _STRING_LITERALS:
            return True
        if current.type == "reference_expression":
            value = current.child_by_field_name("value")
            if value is not None:
                pending.append(value)
        elif current.type == "macro_invocation":
            if macro_name(ctx, current) == "format":
                return True
        elif current.type == "binary_expression":
            op = current.child_by_field_name("operator")
            if op is None or op.type != "+":
                continue
            right = current.child_by_field_name("right")
            left = current.child_by_field_name("left")
            pending.extend(side for side in (right, left) if side is not None)
        else:
            call = as_method_call(ctx, current)
            if call is not None and call.name in _STRING_METHODS:
                return True
    return False


def is_likely_string_expr(ctx: AnalysisContext, node: Node) -> bool:
    if _is_definitely_numeric(node):
        return False
    return _is_definitely_string(ctx, node)


class StringConcatLoopRule(BaseRule):
    meta = RuleMeta(
        rule_id="string-concat-loop",
        name="String Concatenation in Loop",
        description="Detects String + operator inside loops; use push_str() instead",
        default_severity=Severity.WARNING,
    )

    def check(self, ctx: AnalysisContext) -> list[Diagnostic]:
        return _StringConcatVisitor(ctx, self).run()


class _StringConcatVisitor(RuleVisitor):
    def visit_binary_expression(self, node: Node) -> None:
        self._check(node, "+")

    def visit_compound_assignment_expr(self, node: Node) -> None:
        self._check(node, "+=")

    def _check(self, node: Node, operator: str) -> None:
        if not self.state.in_loop():
            return
        op = node.child_by_field_name("operator")
        if op is None or op.type != operator:
            return
        left = node.child_by_field_name("left")
        right = node.child_by_field_name("right")
        if left is None or right is None:
            return
        if not (is_likely_string_expr(self.ctx, left) or is_likely_string_expr(self.ctx, right)):
            return
        fix = self._push_str_fix(node, left, right) if operator == "+=" else None
        self.report(
            op,
            "String concatenation with `+` inside loop; allocates new String each time",
            suggestion="Use `String::push_str()` or `write!()` to a buffer instead",
            fix=fix,
        )

    def _push_str_fix(self, node: Node, left: Node, right: Node) -> Fix | None:
        if left.type != "identifier":
            return None
        if right.end_byte - right.start_byte > MAX_FIX_TEXT_SIZE:
            return None
        var_name = self.ctx.node_text(left)
        rhs = self.ctx.node_text(right)
        # push_str takes &str; borrow owned values.
        if unwrap_parens(right).type not in _STRING_LITERALS | {"reference_expression"}:
            rhs = f"&{rhs}"
        return Fix(
            description=f"Replace `{var_name} += ...` with `{var_name}.push_str(...)`",
            replacements=(
                Replacement(
                    path=self.ctx.path,
                    start_byte=node.start_byte,
                    end_byte=node.end_byte,
                    new_text=f"{var_name}.push_str({rhs})",
                ),
            ),
        )


# ---------------------------------------------------------------------------
# mutex-in-loop
# ---------------------------------------------------------------------------

_LOOP_LOCK_METHODS = frozenset({"lock", "try_lock", "read", "write"})


class MutexLockInLoopRule(BaseRule):
    meta = RuleMeta(
        rule_id="mutex-in-loop",
        name="Mutex Lock in Loop",
        description="Detects Mutex::lock() inside loops; acquire lock once outside loop",
        default_severity=Severity.WARNING,
    )

    def check(self, ctx: AnalysisContext) -> list[Diagnostic]:
        return _MutexLockVisitor(ctx, self).run()


class _MutexLockVisitor(RuleVisitor):
    def visit_call_expression(self, node: Node) -> None:
        if not self.state.in_loop():
            return
        call = as_method_call(self.ctx, node)
        if call is None or call.name not in _LOOP_LOCK_METHODS or argument_nodes(call.arguments):
            return
        self.report(
            call.name_node,
            f"`.{call.name}()` called inside loop; consider acquiring lock once outside loop",
            suggestion="Acquire the lock before the loop to reduce lock contention",
        )
