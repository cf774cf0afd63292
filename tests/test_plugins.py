from __future__ import annotations

from pathlib import Path
from textwrap import dedent

import pytest
from helpers import write_rs

from perfsentinel.audit import analyze_tree
from perfsentinel.config import PerfConfig
from perfsentinel.rules.plugins import PluginLoadError, build_registry, load_plugin_rules

PLUGIN_SOURCE = dedent(
    """
    from perfsentinel.engine.types import Severity
    from perfsentinel.rules.base import BaseRule, RuleMeta
    from perfsentinel.rules.utils import macro_name
    from perfsentinel.rules.visitor import RuleVisitor


    class _TodoVisitor(RuleVisitor):
        def visit_macro_invocation(self, node):
            if macro_name(self.ctx, node) == "todo":
                self.report(node, "`todo!()` left in code")


    class TodoMacroRule(BaseRule):
        meta = RuleMeta(
            rule_id="todo-macro",
            name="todo!() Left In Code",
            description="Flags todo!() invocations",
            default_severity=Severity.INFO,
        )

        def check(self, ctx):
            return _TodoVisitor(ctx, self).run()
    """
)


def _write_plugin(tmp_path: Path, module: str, exports: str) -> None:
    (tmp_path / f"{module}.py").write_text(PLUGIN_SOURCE + "\n" + dedent(exports), encoding="utf-8")


def test_plugin_module_rules_are_added_to_the_registry(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_plugin(tmp_path, "acme_rules_list", "RULES = [TodoMacroRule()]\n")
    monkeypatch.syspath_prepend(str(tmp_path))

    registry = build_registry(("acme_rules_list",))
    assert len(registry) == 15
    assert registry.rule_ids()[-1] == "todo-macro"


def test_plugin_factory_attribute(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_plugin(tmp_path, "acme_rules_factory", "def make():\n    return (TodoMacroRule(),)\n")
    monkeypatch.syspath_prepend(str(tmp_path))

    (rule,) = load_plugin_rules(("acme_rules_factory:make",))
    assert rule.id() == "todo-macro"


def test_plugin_rules_run_during_analysis(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    plugins = tmp_path / "plugins"
    plugins.mkdir()
    _write_plugin(plugins, "acme_rules_hook", "def perfsentinel_rules():\n    return [TodoMacroRule()]\n")
    monkeypatch.syspath_prepend(str(plugins))
    project = tmp_path / "project"
    write_rs(project, "src/lib.rs", "fn later() {\n    todo!()\n}\n")

    result = analyze_tree(project, PerfConfig(plugins=("acme_rules_hook",)))
    assert [(d.rule_id, d.line) for d in result.diagnostics] == [("todo-macro", 2)]


def test_plugin_may_not_reuse_a_builtin_id(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_plugin(
        tmp_path,
        "acme_rules_dup",
        "class Dup(TodoMacroRule):\n"
        "    meta = RuleMeta('clone-in-hot-loop', 'Dup', 'Dup', Severity.INFO)\n"
        "RULES = [Dup()]\n",
    )
    monkeypatch.syspath_prepend(str(tmp_path))

    with pytest.raises(PluginLoadError, match="Duplicate rule id: clone-in-hot-loop"):
        build_registry(("acme_rules_dup",))


@pytest.mark.parametrize(
    ("module", "exports", "spec", "match"),
    [
        ("acme_rules_empty", "", "acme_rules_empty", "must define `perfsentinel_rules\\(\\)` or `RULES`"),
        ("acme_rules_badattr", "RULES = []\n", "acme_rules_badattr:nope", "has no attribute 'nope'"),
        ("acme_rules_badtype", "RULES = [object()]\n", "acme_rules_badtype", "must be BaseRule instances"),
        ("acme_rules_scalar", "RULES = 3\n", "acme_rules_scalar", "Unsupported plugin export type: int"),
        ("acme_rules_badid", "class Bad(TodoMacroRule):\n    meta = RuleMeta('Bad_Id', 'b', 'b', Severity.INFO)\nRULES = [Bad()]\n", "acme_rules_badid", "kebab-case"),
    ],
)
def test_plugin_errors(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, module: str, exports: str, spec: str, match: str
) -> None:
    _write_plugin(tmp_path, module, exports)
    monkeypatch.syspath_prepend(str(tmp_path))

    with pytest.raises(PluginLoadError, match=match):
        build_registry((spec,))


def test_missing_plugin_module() -> None:
    with pytest.raises(PluginLoadError, match="Failed to import plugin module 'no_such_perf_plugin'"):
        build_registry(("no_such_perf_plugin",))


def test_no_plugins_means_builtin_registry() -> None:
    assert len(build_registry(())) == 14
