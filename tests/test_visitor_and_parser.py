from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from helpers import run_rule

from perfsentinel.engine.tree_sitter import ParseError, parse_source
from perfsentinel.rules.memory import CloneInLoopRule
from perfsentinel.rules.visitor import MAX_RECURSION_DEPTH, TraversalState


def test_traversal_state_exits_saturate_at_zero() -> None:
    state = TraversalState()
    state.exit_loop()
    state.exit_expr()
    assert (state.loop_depth, state.recursion_depth) == (0, 0)
    assert not state.in_loop()


def test_traversal_state_keeps_loop_depth_within_recursion_depth() -> None:
    state = TraversalState()
    state.enter_expr()
    state.enter_loop()
    state.enter_loop()
    assert (state.loop_depth, state.recursion_depth) == (2, 3)

    # Unbalanced unwinding never breaks the invariant.
    for _ in range(5):
        state.exit_expr()
        assert 0 <= state.loop_depth <= state.recursion_depth
    state.exit_loop()
    state.exit_loop()
    state.exit_loop()
    assert (state.loop_depth, state.recursion_depth) == (0, 0)


def test_traversal_state_bails_at_max_depth() -> None:
    assert TraversalState(recursion_depth=MAX_RECURSION_DEPTH).should_bail()
    assert not TraversalState(recursion_depth=MAX_RECURSION_DEPTH - 1).should_bail()


def _nested_clone(depth: int) -> str:
    expr = "(" * depth + "x.clone()" + ")" * depth
    return f"fn f(v: &[String]) {{\n    for x in v {{\n        let y = {expr};\n    }}\n}}\n"


def test_walk_stops_descending_past_max_depth() -> None:
    assert len(run_rule(CloneInLoopRule(), _nested_clone(3))) == 1
    # Too deep to visit: no finding and no RecursionError.
    assert run_rule(CloneInLoopRule(), _nested_clone(MAX_RECURSION_DEPTH + 50)) == []


def test_parse_source_returns_rust_tree() -> None:
    tree = parse_source("fn main() {}\n")
    assert tree.root_node.type == "source_file"
    assert tree.root_node.named_children[0].type == "function_item"


def test_parse_source_rejects_syntax_errors() -> None:
    with pytest.raises(ParseError) as excinfo:
        parse_source("fn broken( {\n", path=Path("src/broken.rs"))
    assert excinfo.value.path == Path("src/broken.rs")
    assert "syntax error" in excinfo.value.message
    assert "src/broken.rs" in str(excinfo.value)


def test_parse_source_is_thread_safe() -> None:
    sources = [f"fn f{i}() -> u32 {{ {i} }}\n" for i in range(32)]
    with ThreadPoolExecutor(max_workers=8) as executor:
        kinds = list(executor.map(lambda s: parse_source(s).root_node.named_children[0].type, sources))
    assert kinds == ["function_item"] * 32
