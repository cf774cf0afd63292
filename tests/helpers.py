from __future__ import annotations

from pathlib import Path

from perfsentinel.config import PerfConfig
from perfsentinel.engine.context import AnalysisContext
from perfsentinel.engine.tree_sitter import parse_source
from perfsentinel.engine.types import Diagnostic
from perfsentinel.rules.base import BaseRule


def make_ctx(source: str, *, path: Path = Path("src/lib.rs"), config: PerfConfig | None = None) -> AnalysisContext:
    return AnalysisContext(path=path, source=source, tree=parse_source(source, path=path), config=config or PerfConfig())


def run_rule(rule: BaseRule, source: str, **kwargs) -> list[Diagnostic]:
    return sorted(rule.check(make_ctx(source, **kwargs)), key=lambda d: (d.line, d.column))


def write_rs(root: Path, relpath: str, content: str) -> Path:
    path = root / relpath
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path
