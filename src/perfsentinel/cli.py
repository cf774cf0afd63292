from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from perfsentinel import __version__
from perfsentinel.audit import AnalysisResult, analysis_root, audit_path, write_baseline
from perfsentinel.autofix import FixError, apply_fixes, preview_fixes
from perfsentinel.baseline import BaselineError
from perfsentinel.config import CONFIG_FILENAME, DEFAULT_CONFIG_TOML, OUTPUT_FORMATS, ConfigError, load_config
from perfsentinel.engine.tree_sitter import TreeSitterError
from perfsentinel.engine.types import Diagnostic, Severity
from perfsentinel.logging_utils import configure_logging
from perfsentinel.reporters.json_reporter import render_json
from perfsentinel.reporters.sarif import render_sarif
from perfsentinel.reporters.terminal import render_terminal
from perfsentinel.rules.plugins import PluginLoadError, build_registry
from perfsentinel.utils import safe_relpath

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="PerfSentinel: static analyzer for performance anti-patterns in Rust code.",
)
console = Console()
err_console = Console(stderr=True)
logger = logging.getLogger(__name__)

# Errors that make a run meaningless; reported with exit code 2.
_SETUP_ERRORS = (ConfigError, BaselineError, PluginLoadError, TreeSitterError)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def _main(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Verbose logs (printed to stderr)."),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only log warnings and errors."),
    ] = False,
) -> None:
    """PerfSentinel CLI."""

    if verbose and quiet:
        raise typer.BadParameter("Choose at most one: --verbose or --quiet.")
    configure_logging(verbose=verbose, quiet=quiet)
    ctx.obj = {"verbose": verbose, "quiet": quiet}


_NEVER = frozenset({"never", "none"})
_RULES_FORMATS = ("terminal", "json")


def _severity_callback(value: str) -> str:
    try:
        return Severity.parse(value).label
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _fail_on_callback(value: str) -> str:
    if value.strip().lower() in _NEVER:
        return "never"
    return _severity_callback(value)


def _format_callback(choices: tuple[str, ...]):
    def validate(value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if normalized not in choices:
            raise typer.BadParameter(f"Unsupported format. Use: {', '.join(choices)}.")
        return normalized

    return validate


def _run_audit(path: Path, *, apply_baseline: bool, workers: int | None = None) -> AnalysisResult:
    try:
        return audit_path(path, apply_baseline=apply_baseline, workers=workers)
    except _SETUP_ERRORS as exc:
        err_console.print(f"Error: {exc}", markup=False)
        raise typer.Exit(code=2) from exc


def _emit_output(fmt: str, *, result: AnalysisResult, diagnostics: list[Diagnostic]) -> None:
    if fmt == "terminal":
        render_terminal(result, console=console, diagnostics=diagnostics)
        return
    if fmt == "json":
        skipped = [safe_relpath(e.path, result.root) for e in result.errors]
        typer.echo(
            render_json(diagnostics, project_root=result.root, files_analyzed=result.files_analyzed, skipped=skipped)
        )
        return
    registry = build_registry(load_config(result.root).plugins)
    meta = {rule.id(): rule.meta for rule in registry}
    typer.echo(render_sarif(diagnostics, project_root=result.root, rule_meta=meta))


@app.command()
def check(
    path: Annotated[
        Path,
        typer.Argument(
            exists=True,
            file_okay=True,
            dir_okay=True,
            resolve_path=True,
            help="File or directory to analyze (default: current directory).",
        ),
    ] = Path("."),
    output_format: Annotated[
        str | None,
        typer.Option(
            "--format",
            callback=_format_callback(OUTPUT_FORMATS),
            help="Output format: terminal, json, sarif (default: from config).",
            show_default=False,
        ),
    ] = None,
    min_severity: Annotated[
        str,
        typer.Option(
            "--min-severity",
            callback=_severity_callback,
            help="Hide findings below this severity: info, warning, error.",
            show_default=True,
        ),
    ] = "info",
    fail_on: Annotated[
        str,
        typer.Option(
            "--fail-on",
            callback=_fail_on_callback,
            help="Exit 1 when a finding reaches this severity (or `never`).",
            show_default=True,
        ),
    ] = "error",
    use_baseline: Annotated[
        bool,
        typer.Option("--baseline/--no-baseline", help="Hide findings recorded in .perfsentinel-baseline.", show_default=True),
    ] = True,
    workers: Annotated[
        int | None,
        typer.Option("--workers", min=1, help="Worker threads (default: PERFSENTINEL_WORKERS or CPU count).", show_default=False),
    ] = None,
) -> None:
    """
    Analyze Rust sources and report performance anti-patterns.

    Exits with 1 when a finding reaches --fail-on, 2 on configuration errors.
    """

    minimum = Severity.parse(min_severity)
    threshold = None if fail_on == "never" else Severity.parse(fail_on)

    try:
        config = load_config(analysis_root(path))
    except ConfigError as exc:
        err_console.print(f"Error: {exc}", markup=False)
        raise typer.Exit(code=2) from exc
    fmt = output_format or config.output_format

    result = _run_audit(path, apply_baseline=use_baseline, workers=workers)
    shown = [d for d in result.diagnostics if d.severity >= minimum]
    _emit_output(fmt, result=result, diagnostics=shown)

    if threshold is not None and any(d.severity >= threshold for d in result.diagnostics):
        raise typer.Exit(code=1)


@app.command()
def fix(
    path: Annotated[
        Path,
        typer.Argument(
            exists=True,
            file_okay=True,
            dir_okay=True,
            resolve_path=True,
            help="File or directory to analyze and fix (default: current directory).",
        ),
    ] = Path("."),
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Don't write changes; only print a unified diff."),
    ] = False,
) -> None:
    """
    Apply the machine fixes attached to findings.

    Every edit is validated before any file is written; one invalid edit
    aborts the whole batch.
    """

    result = _run_audit(path, apply_baseline=True)
    fixable = [d for d in result.diagnostics if d.fix is not None]
    if not fixable:
        console.print("No fixable issues found.")
        return

    try:
        if dry_run:
            for diff in preview_fixes(fixable, result.root).values():
                typer.echo(diff)
            return
        applied = apply_fixes(fixable, result.root)
    except FixError as exc:
        err_console.print(f"Error: {exc}", markup=False)
        raise typer.Exit(code=2) from exc
    console.print(f"Applied {applied} fix(es).")


@app.command()
def baseline(
    path: Annotated[
        Path,
        typer.Argument(
            exists=True,
            file_okay=True,
            dir_okay=True,
            resolve_path=True,
            help="File or directory to analyze when generating a baseline (default: current directory).",
        ),
    ] = Path("."),
) -> None:
    """
    Record current findings in .perfsentinel-baseline so later checks only report new ones.

    Existing entries are kept.
    """

    result = _run_audit(path, apply_baseline=False)
    try:
        baseline_path, added = write_baseline(result)
    except OSError as exc:
        err_console.print(f"Error: failed to write baseline: {exc}", markup=False)
        raise typer.Exit(code=2) from exc
    console.print(f"Added {added} entr{'y' if added == 1 else 'ies'} to {baseline_path}", markup=False)


@app.command()
def init(
    path: Annotated[
        Path,
        typer.Argument(
            exists=True,
            file_okay=False,
            dir_okay=True,
            resolve_path=True,
            help="Target project directory (default: current directory).",
        ),
    ] = Path("."),
    force: Annotated[
        bool,
        typer.Option("--force", help="Overwrite an existing perfsentinel.toml."),
    ] = False,
) -> None:
    """Write a default perfsentinel.toml."""

    target = path / CONFIG_FILENAME
    if target.exists() and not force:
        err_console.print(f"{target} already exists (use --force to overwrite).", markup=False)
        raise typer.Exit(code=1)
    target.write_text(DEFAULT_CONFIG_TOML, encoding="utf-8")
    console.print(f"Wrote {target}", markup=False)


@app.command()
def rules(
    path: Annotated[
        Path,
        typer.Argument(
            exists=True,
            file_okay=False,
            dir_okay=True,
            resolve_path=True,
            help="Project directory whose config and plugins apply (default: current directory).",
        ),
    ] = Path("."),
    output_format: Annotated[
        str,
        typer.Option(
            "--format",
            callback=_format_callback(_RULES_FORMATS),
            help="Output format: terminal, json.",
            show_default=True,
        ),
    ] = "terminal",
) -> None:
    """
    List all available rules (built-in + plugin rules) and their levels.
    """

    from rich.table import Table

    try:
        config = load_config(path)
        registry = build_registry(config.plugins)
    except _SETUP_ERRORS as exc:
        err_console.print(f"Error: {exc}", markup=False)
        raise typer.Exit(code=2) from exc

    rows = []
    for rule in registry:
        severity = config.rule_severity(rule.id(), rule.default_severity())
        rows.append(
            {
                "rule_id": rule.id(),
                "name": rule.name(),
                "description": rule.description(),
                "default_severity": rule.default_severity().label,
                "enabled": severity is not None,
                "severity": severity.label if severity is not None else None,
            }
        )

    if output_format == "json":
        typer.echo(json.dumps(rows, indent=2))
        return

    table = Table(title="PerfSentinel Rules")
    table.add_column("ID", style="bold")
    table.add_column("Severity")
    table.add_column("Enabled", justify="center")
    table.add_column("Description")
    for row in rows:
        table.add_row(
            str(row["rule_id"]),
            str(row["severity"] or row["default_severity"]),
            "yes" if row["enabled"] else "no",
            str(row["description"]),
        )
    console.print(table)
