from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from perfsentinel import __version__
from perfsentinel.engine.types import Diagnostic, Fix
from perfsentinel.utils import safe_relpath

REPORT_SCHEMA_VERSION = 1


def render_json(
    diagnostics: Sequence[Diagnostic],
    *,
    project_root: Path,
    files_analyzed: int | None = None,
    skipped: Sequence[str] = (),
) -> str:
    payload: dict[str, Any] = {
        "schema_version": REPORT_SCHEMA_VERSION,
        "tool": {"name": "PerfSentinel", "version": __version__},
    }
    if files_analyzed is not None:
        payload["files_analyzed"] = files_analyzed
    payload["skipped"] = list(skipped)
    payload["diagnostics"] = [diagnostic_to_dict(d, project_root=project_root) for d in diagnostics]
    return json.dumps(payload, indent=2, sort_keys=False)


def diagnostic_to_dict(d: Diagnostic, *, project_root: Path) -> dict[str, Any]:
    out: dict[str, Any] = {
        "rule_id": d.rule_id,
        "severity": d.severity.label,
        "message": d.message,
        "file_path": safe_relpath(d.path, project_root),
        "line": d.line,
        "column": d.column,
        "end_line": d.end_line,
        "end_column": d.end_column,
        "suggestion": d.suggestion,
    }
    if d.fix is not None:
        out["fix"] = _fix_to_dict(d.fix, project_root=project_root)
    return out


def _fix_to_dict(fix: Fix, *, project_root: Path) -> dict[str, Any]:
    return {
        "description": fix.description,
        "replacements": [
            {
                "file_path": safe_relpath(r.path, project_root),
                "start_byte": r.start_byte,
                "end_byte": r.end_byte,
                "new_text": r.new_text,
            }
            for r in fix.replacements
        ],
    }
