from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from perfsentinel import __version__
from perfsentinel.engine.types import Diagnostic, Severity
from perfsentinel.rules.base import RuleMeta
from perfsentinel.utils import safe_relpath

SARIF_SCHEMA = "https://json.schemastore.org/sarif-2.1.0.json"


def render_sarif(
    diagnostics: Sequence[Diagnostic],
    *,
    project_root: Path,
    rule_meta: Mapping[str, RuleMeta] | None = None,
) -> str:
    meta = rule_meta or {}

    # Only rules that produced a result are listed, in first-seen order.
    driver_rules: list[dict[str, Any]] = []
    rule_index: dict[str, int] = {}
    for d in diagnostics:
        if d.rule_id in rule_index:
            continue
        rule_index[d.rule_id] = len(driver_rules)
        m = meta.get(d.rule_id)
        description = m.description if m is not None else d.message
        entry: dict[str, Any] = {
            "id": d.rule_id,
            "name": m.name if m is not None else d.rule_id,
            "shortDescription": {"text": description},
        }
        if m is not None:
            entry["defaultConfiguration"] = {"level": _sarif_level(m.default_severity)}
        driver_rules.append(entry)

    results = [_result(d, project_root=project_root, rule_index=rule_index) for d in diagnostics]

    sarif = {
        "$schema": SARIF_SCHEMA,
        "version": "2.1.0",
        "runs": [
            {
                "tool": {"driver": {"name": "PerfSentinel", "version": __version__, "rules": driver_rules}},
                "results": results,
            }
        ],
    }
    return json.dumps(sarif, indent=2, sort_keys=False)


def _result(d: Diagnostic, *, project_root: Path, rule_index: dict[str, int]) -> dict[str, Any]:
    res: dict[str, Any] = {
        "ruleId": d.rule_id,
        "ruleIndex": rule_index[d.rule_id],
        "level": _sarif_level(d.severity),
        "message": {"text": d.message},
        "locations": [
            {
                "physicalLocation": {
                    "artifactLocation": {"uri": safe_relpath(d.path, project_root)},
                    "region": {"startLine": d.line, "startColumn": d.column},
                }
            }
        ],
    }
    if d.suggestion:
        res["properties"] = {"suggestion": d.suggestion}
    return res


def _sarif_level(severity: Severity) -> str:
    if severity == Severity.ERROR:
        return "error"
    if severity == Severity.WARNING:
        return "warning"
    return "note"
