from __future__ import annotations

from pathlib import Path

import pytest

from perfsentinel.config import PerfConfig
from perfsentinel.engine.detection import analyze_source
from perfsentinel.engine.tree_sitter import parse_source
from perfsentinel.rules.memory import CloneInLoopRule
from perfsentinel.suppressions import Suppressions, extract_suppressions


def _suppressions(source: str) -> Suppressions:
    return extract_suppressions(source, parse_source(source))


def test_ignore_comment_suppresses_listed_rules_on_next_line() -> None:
    suppressions = _suppressions(
        """\
fn f(v: &[String]) {
    for x in v {
        // perfsentinel-ignore: clone-in-hot-loop, Regex_In_Loop
        let y = x.clone();
    }
}
"""
    )

    assert suppressions.is_suppressed("clone-in-hot-loop", line=4)
    assert suppressions.is_suppressed("regex-in-loop", line=4)
    assert not suppressions.is_suppressed("format-in-loop", line=4)
    # Only the next line is covered.
    assert not suppressions.is_suppressed("clone-in-hot-loop", line=3)
    assert not suppressions.is_suppressed("clone-in-hot-loop", line=5)


def test_bare_ignore_comment_covers_every_rule() -> None:
    suppressions = _suppressions("fn f() {\n    // perfsentinel-ignore\n    g();\n}\n")
    assert suppressions.is_suppressed("anything-at-all", line=3)


def test_allow_attribute_covers_the_item_span() -> None:
    suppressions = _suppressions(
        """\
#[allow(perfsentinel::clone_in_hot_loop)]
fn copy(v: &[String]) {
    for x in v {
        let y = x.clone();
    }
}

fn other() {}
"""
    )

    for line in range(2, 7):
        assert suppressions.is_suppressed("clone-in-hot-loop", line=line)
    assert not suppressions.is_suppressed("clone-in-hot-loop", line=8)
    assert not suppressions.is_suppressed("regex-in-loop", line=4)


def test_allow_attribute_with_comment_between_attribute_and_item() -> None:
    suppressions = _suppressions(
        """\
#[inline]
#[allow(perfsentinel)]
// helper used by tests
fn helper() {
    work();
}
"""
    )
    assert suppressions.is_suppressed("vec-no-capacity", line=5)


def test_inner_attribute_suppresses_whole_file() -> None:
    suppressions = _suppressions("#![allow(perfsentinel::format_in_loop)]\n\nfn f() {}\n")
    assert suppressions.is_suppressed("format-in-loop", line=999)
    assert suppressions.is_suppressed("format-in-loop", line=None)
    assert not suppressions.is_suppressed("clone-in-hot-loop", line=3)


def test_unrelated_allow_attributes_are_ignored() -> None:
    suppressions = _suppressions("#[allow(dead_code, clippy::all)]\nfn f() {}\n")
    assert suppressions.disabled_in_file == frozenset()
    assert dict(suppressions.disabled_on_line) == {}


def test_suppressions_mapping_is_read_only() -> None:
    suppressions = _suppressions("// perfsentinel-ignore: clone-in-hot-loop\nfn f() {}\n")
    assert isinstance(suppressions.disabled_on_line[2], frozenset)
    with pytest.raises(TypeError):
        suppressions.disabled_on_line[2] = frozenset()  # type: ignore[index]


def test_suppressed_findings_are_dropped_by_the_engine() -> None:
    source = """\
fn f(v: &[String]) {
    for x in v {
        // perfsentinel-ignore: clone-in-hot-loop
        let y = x.clone();
        let z = x.clone();
    }
}
"""
    diagnostics = analyze_source(Path("src/lib.rs"), source, PerfConfig(), [CloneInLoopRule()])
    assert [d.line for d in diagnostics] == [5]
