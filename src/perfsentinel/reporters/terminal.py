from __future__ import annotations

from collections import defaultdict
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from perfsentinel import __version__
from perfsentinel.audit import AnalysisResult
from perfsentinel.engine.types import Diagnostic, Severity
from perfsentinel.utils import safe_relpath

_SEVERITY_ICON = {Severity.ERROR: "✖", Severity.WARNING: "⚠", Severity.INFO: "ℹ"}
_SEVERITY_STYLE = {Severity.ERROR: "bold red", Severity.WARNING: "yellow", Severity.INFO: "dim"}


def render_terminal(
    result: AnalysisResult,
    *,
    console: Console,
    diagnostics: list[Diagnostic] | None = None,
) -> None:
    """
    Print findings grouped by file, then a counts summary.

    `diagnostics` overrides `result.diagnostics` (e.g. after severity filtering).
    """

    shown = list(result.diagnostics) if diagnostics is None else diagnostics
    root = result.root

    header = Text()
    header.append("PerfSentinel ", style="bold")
    header.append(f"v{__version__}", style="dim")
    console.print(Panel(header, subtitle=f"Analyzed {result.files_analyzed} files", border_style="cyan"))

    by_file: dict[str, list[Diagnostic]] = defaultdict(list)
    for d in shown:
        by_file[safe_relpath(d.path, root)].append(d)

    for file_path in sorted(by_file):
        console.print(Text(file_path, style="bold"))
        file_lines = _read_lines(root / file_path)
        for d in sorted(by_file[file_path], key=_sort_key):
            _print_diagnostic(console, d, file_lines=file_lines)
        console.print()

    _print_summary(result, shown, console=console)


def _print_diagnostic(console: Console, d: Diagnostic, *, file_lines: list[str]) -> None:
    line = Text()
    line.append(f"  {_SEVERITY_ICON[d.severity]} ", style=_SEVERITY_STYLE[d.severity])
    line.append(d.rule_id, style="bold")
    line.append(f"  ({d.line}:{d.column})", style="dim")
    line.append(f"  {d.message}")
    console.print(line)

    idx = d.line - 1
    if 0 <= idx < len(file_lines):
        console.print(f"     {d.line:>4} │ {file_lines[idx].rstrip()}", style="dim", markup=False)

    if d.suggestion:
        console.print(f"     → {d.suggestion}", style="dim", markup=False)
    if d.fix is not None:
        console.print(f"     fix: {d.fix.description}", style="green", markup=False)


def _print_summary(result: AnalysisResult, shown: list[Diagnostic], *, console: Console) -> None:
    counts = {severity: 0 for severity in Severity}
    for d in shown:
        counts[d.severity] += 1

    console.print(Text("─" * 60, style="dim"))
    if not shown:
        console.print(Text("No performance issues found.", style="bold green"))
    else:
        console.print(
            Text(
                f"{len(shown)} issue(s): {counts[Severity.ERROR]} error(s), "
                f"{counts[Severity.WARNING]} warning(s), {counts[Severity.INFO]} info",
                style="bold",
            )
        )
    fixable = sum(1 for d in shown if d.fix is not None)
    if fixable:
        console.print(Text(f"{fixable} issue(s) can be fixed with `perfsentinel fix`", style="dim"))
    if result.baselined:
        console.print(Text(f"{result.baselined} known issue(s) hidden by the baseline", style="dim"))
    if result.errors:
        console.print(Text(f"Skipped {len(result.errors)} file(s):", style="yellow"))
        for error in result.errors:
            console.print(f"  {safe_relpath(error.path, result.root)}: {error.message}", style="dim", markup=False)
    console.print(Text("─" * 60, style="dim"))


def _sort_key(d: Diagnostic) -> tuple[int, int, int, str]:
    return -int(d.severity), d.line, d.column, d.rule_id


def _read_lines(path: Path) -> list[str]:
    try:
        return path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        return []
