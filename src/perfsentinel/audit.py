from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path

from perfsentinel.baseline import BASELINE_FILENAME, Baseline, BaselineError
from perfsentinel.config import PerfConfig, load_config
from perfsentinel.engine.detection import FileError, analyze_files
from perfsentinel.engine.types import Diagnostic
from perfsentinel.rules.plugins import build_registry
from perfsentinel.rules.registry import RuleRegistry
from perfsentinel.scanner import (
    DEFAULT_MAX_WORKERS,
    DiscoveryOptions,
    discover_rust_files,
    resolve_worker_count,
    worker_count_from_env,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    root: Path
    diagnostics: tuple[Diagnostic, ...]
    errors: tuple[FileError, ...]
    files: tuple[Path, ...]
    baselined: int = 0

    @property
    def files_analyzed(self) -> int:
        return len(self.files) - len(self.errors)


def analysis_root(path: Path) -> Path:
    resolved = path.resolve()
    return resolved if resolved.is_dir() else resolved.parent


def analyze_tree(
    path: Path | str,
    config: PerfConfig | None = None,
    registry: RuleRegistry | None = None,
    workers: int | None = None,
    *,
    discovery: DiscoveryOptions | None = None,
) -> AnalysisResult:
    """
    Analyze every Rust file under `path`.

    `config` defaults to `perfsentinel.toml` at the analysis root and
    `registry` to the built-in rules plus configured plugins. `workers`
    defaults to `PERFSENTINEL_WORKERS`, then the CPU count.
    """

    target = Path(path).resolve()
    root = analysis_root(target)
    if config is None:
        config = load_config(root)
    if registry is None:
        registry = build_registry(config.plugins)
    _warn_unknown_rule_ids(config, registry)

    if workers is None:
        worker_count = worker_count_from_env()
    else:
        worker_count = resolve_worker_count(str(workers), max_workers=DEFAULT_MAX_WORKERS)

    files = discover_rust_files(target, discovery)
    logger.debug("Analyzing %d file(s) under %s with %d worker(s)", len(files), root, worker_count)
    diagnostics, errors = analyze_files(files, config, registry.rules, workers=worker_count)
    if errors:
        logger.warning("Skipped %d file(s) that could not be read or parsed", len(errors))

    return AnalysisResult(root=root, diagnostics=tuple(diagnostics), errors=tuple(errors), files=tuple(files))


def analyze(path: Path | str, config: PerfConfig | None = None) -> list[Diagnostic]:
    return list(analyze_tree(path, config).diagnostics)


def audit_path(
    path: Path | str,
    *,
    config: PerfConfig | None = None,
    apply_baseline: bool = True,
    workers: int | None = None,
) -> AnalysisResult:
    """`analyze_tree` plus the project baseline, when enabled and present."""

    root = analysis_root(Path(path))
    if config is None:
        config = load_config(root)
    result = analyze_tree(path, config, workers=workers)
    if not (apply_baseline and config.baseline):
        return result

    baseline_path = root / BASELINE_FILENAME
    if not baseline_path.exists():
        return result
    baseline = Baseline.load_from(baseline_path)
    kept = baseline.filter(result.diagnostics, root)
    hidden = len(result.diagnostics) - len(kept)
    if hidden:
        logger.info("%d finding(s) hidden by %s", hidden, BASELINE_FILENAME)
    return replace(result, diagnostics=tuple(kept), baselined=hidden)


def write_baseline(result: AnalysisResult) -> tuple[Path, int]:
    """Merge `result` into the root's baseline file; returns its path and the number of new entries."""

    baseline_path = result.root / BASELINE_FILENAME
    baseline = Baseline()
    if baseline_path.exists():
        try:
            baseline = Baseline.load_from(baseline_path)
        except BaselineError:
            logger.warning("Existing %s is invalid and will be replaced", BASELINE_FILENAME)
    added = baseline.add_all(result.diagnostics, result.root)
    baseline.save_to(baseline_path)
    return baseline_path, added


def _warn_unknown_rule_ids(config: PerfConfig, registry: RuleRegistry) -> None:
    for rule_id in sorted(config.rules):
        if not registry.has(rule_id):
            logger.warning("Unknown rule id in [rules]: %s", rule_id)
