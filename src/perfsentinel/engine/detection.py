from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from functools import partial
from pathlib import Path
from typing import Literal

from perfsentinel.config import PerfConfig
from perfsentinel.engine.context import AnalysisContext
from perfsentinel.engine.tree_sitter import ParseError, parse_source
from perfsentinel.engine.types import Diagnostic
from perfsentinel.rules.base import BaseRule
from perfsentinel.scanner import MAX_FILE_SIZE, FileReadError, read_file_secure
from perfsentinel.suppressions import Suppressions, extract_suppressions

logger = logging.getLogger(__name__)

FileErrorKind = Literal["read", "parse"]


@dataclass(frozen=True, slots=True)
class FileError:
    """A file that was skipped, with the reason."""

    path: Path
    kind: FileErrorKind
    message: str


def run_rules(
    ctx: AnalysisContext,
    rules: Iterable[BaseRule],
    suppressions: Suppressions | None = None,
) -> list[Diagnostic]:
    """
    Run `rules` over one file.

    Rules set to `allow` are skipped. A rule that raises is logged and only its
    own diagnostics for this file are lost. Config severity overrides and
    suppressions are applied here, so callers only ever see final diagnostics.
    Diagnostics come back in rule order, then in each rule's emission order.
    """

    diagnostics: list[Diagnostic] = []
    for rule in rules:
        level = ctx.config.rule_level(rule.id())
        if level == "allow":
            continue
        # Only an explicit config level overrides what the rule reported.
        override = ctx.config.rule_severity(rule.id(), rule.default_severity()) if level is not None else None
        try:
            raw = rule.check(ctx)
        except Exception:  # noqa: BLE001
            logger.warning("Rule %s failed on %s; its findings for this file are discarded", rule.id(), ctx.path)
            logger.debug("Rule failure traceback", exc_info=True)
            continue
        for diagnostic in raw:
            if suppressions is not None and suppressions.is_suppressed(diagnostic.rule_id, line=diagnostic.line):
                continue
            if override is not None and diagnostic.severity != override:
                diagnostic = replace(diagnostic, severity=override)
            diagnostics.append(diagnostic)
    return diagnostics


def analyze_source(path: Path, source: str, config: PerfConfig, rules: Iterable[BaseRule]) -> list[Diagnostic]:
    tree = parse_source(source, path=path)
    ctx = AnalysisContext(path=path, source=source, tree=tree, config=config)
    return run_rules(ctx, rules, extract_suppressions(source, tree))


def analyze_file_with_rules(
    path: Path,
    config: PerfConfig,
    rules: Iterable[BaseRule],
    *,
    max_file_size: int = MAX_FILE_SIZE,
) -> list[Diagnostic]:
    """Read, parse and check a single file. Raises `FileReadError` or `ParseError`."""

    source = read_file_secure(path, max_size=max_file_size)
    return analyze_source(path, source, config, rules)


def analyze_files(
    files: Sequence[Path],
    config: PerfConfig,
    rules: Sequence[BaseRule],
    *,
    workers: int = 1,
    max_file_size: int = MAX_FILE_SIZE,
) -> tuple[list[Diagnostic], list[FileError]]:
    """
    Analyze `files` on a thread pool; results keep the order of `files`.

    Unreadable and unparsable files are logged, recorded as `FileError`s and
    skipped.
    """

    errors: list[FileError] = []
    errors_lock = threading.Lock()
    check_file = partial(
        _check_file,
        config=config,
        rules=rules,
        errors=errors,
        errors_lock=errors_lock,
        max_file_size=max_file_size,
    )

    diagnostics: list[Diagnostic] = []
    if workers <= 1 or len(files) <= 1:
        for path in files:
            diagnostics.extend(check_file(path))
    else:
        max_workers = min(workers, len(files))
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            for file_diagnostics in executor.map(check_file, files):
                diagnostics.extend(file_diagnostics)

    errors.sort(key=lambda e: str(e.path))
    return diagnostics, errors


def _check_file(
    path: Path,
    *,
    config: PerfConfig,
    rules: Sequence[BaseRule],
    errors: list[FileError],
    errors_lock: threading.Lock,
    max_file_size: int,
) -> list[Diagnostic]:
    error: FileError | None = None
    try:
        return analyze_file_with_rules(path, config, rules, max_file_size=max_file_size)
    except FileReadError as exc:
        error = FileError(path=path, kind="read", message=str(exc))
    except ParseError as exc:
        error = FileError(path=path, kind="parse", message=exc.message)
    logger.warning("Skipping %s: %s", path, error.message)
    with errors_lock:
        errors.append(error)
    return []
