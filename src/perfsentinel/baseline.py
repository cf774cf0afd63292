from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from perfsentinel.engine.types import Diagnostic
from perfsentinel.utils import safe_relpath

logger = logging.getLogger(__name__)

BASELINE_FILENAME = ".perfsentinel-baseline"
BASELINE_VERSION = 1

FNV_OFFSET_BASIS = 14695981039346656037
FNV_PRIME = 1099511628211
_U64_MASK = (1 << 64) - 1


class BaselineError(RuntimeError):
    """Raised when a baseline file is invalid or cannot be processed."""


def fnv1a_64(data: bytes) -> int:
    value = FNV_OFFSET_BASIS
    for byte in data:
        value ^= byte
        value = (value * FNV_PRIME) & _U64_MASK
    return value


def source_lines(text: str) -> list[str]:
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def context_hash(lines: Sequence[str], line: int) -> int | None:
    """
    Hash the trimmed lines `line - 1 .. line + 1` (1-based).

    Only the code around a finding feeds the hash, so findings keep their
    fingerprint when unrelated edits shift them up or down the file.
    """

    if line < 1 or line > len(lines):
        return None
    start = max(0, line - 2)
    end = min(len(lines), line + 1)
    window = "".join(lines[i].strip() + "\n" for i in range(start, end))
    return fnv1a_64(window.encode("utf-8"))


@dataclass(frozen=True, slots=True)
class Fingerprint:
    rule_id: str
    file_path: str  # relative to the analysis root, POSIX separators
    code_hash: int

    @classmethod
    def from_diagnostic(cls, diagnostic: Diagnostic, root: Path, lines: Sequence[str]) -> Fingerprint | None:
        code_hash = context_hash(lines, diagnostic.line)
        if code_hash is None:
            return None
        return cls(
            rule_id=diagnostic.rule_id,
            file_path=safe_relpath(diagnostic.path, root),
            code_hash=code_hash,
        )

    def to_json(self) -> dict[str, Any]:
        return {"rule_id": self.rule_id, "file_path": self.file_path, "code_hash": self.code_hash}


@dataclass(frozen=True, slots=True)
class BaselineEntry:
    fingerprint: Fingerprint
    description: str
    added: str | None = None

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = {"fingerprint": self.fingerprint.to_json(), "description": self.description}
        if self.added is not None:
            out["added"] = self.added
        return out


class Baseline:
    """
    Known findings, keyed by fingerprint.

    Entries keep insertion order for the file on disk and only change through
    `add` and `merge`, which keep the derived fingerprint set in step.
    """

    def __init__(self, version: int = BASELINE_VERSION, entries: Iterable[BaselineEntry] = ()) -> None:
        self.version = version
        self._entries: list[BaselineEntry] = list(entries)
        self._fingerprints: set[Fingerprint] = {entry.fingerprint for entry in self._entries}

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"Baseline(version={self.version!r}, entries={len(self._entries)})"

    @property
    def entries(self) -> tuple[BaselineEntry, ...]:
        return tuple(self._entries)

    def _append(self, entry: BaselineEntry) -> None:
        self._entries.append(entry)
        self._fingerprints.add(entry.fingerprint)

    @classmethod
    def load(cls, root: Path) -> Baseline:
        return cls.load_from(root / BASELINE_FILENAME)

    @classmethod
    def load_from(cls, path: Path) -> Baseline:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise BaselineError(f"Failed to read baseline: {path}") from exc
        return cls.from_json(data)

    @classmethod
    def from_json(cls, data: Any) -> Baseline:
        if not isinstance(data, dict):
            raise BaselineError("Baseline must be a JSON object.")
        version = data.get("version")
        if version != BASELINE_VERSION:
            raise BaselineError(f"Unsupported baseline version: {version!r}")
        raw_entries = data.get("entries", [])
        if not isinstance(raw_entries, list):
            raise BaselineError("Baseline `entries` must be a list.")
        return cls(version=version, entries=[_parse_entry(item) for item in raw_entries])

    def to_json(self) -> dict[str, Any]:
        return {"version": self.version, "entries": [entry.to_json() for entry in self._entries]}

    def save(self, root: Path) -> Path:
        path = root / BASELINE_FILENAME
        self.save_to(path)
        return path

    def save_to(self, path: Path) -> None:
        path.write_text(json.dumps(self.to_json(), indent=2) + "\n", encoding="utf-8")

    def contains(self, fingerprint: Fingerprint) -> bool:
        return fingerprint in self._fingerprints

    def add(self, diagnostic: Diagnostic, root: Path, lines: Sequence[str] | None = None) -> bool:
        """Record `diagnostic`; returns False when it was already known or cannot be fingerprinted."""

        if lines is None:
            lines = _read_lines(diagnostic.path)
            if lines is None:
                return False
        fingerprint = Fingerprint.from_diagnostic(diagnostic, root, lines)
        if fingerprint is None or fingerprint in self._fingerprints:
            return False
        self._append(
            BaselineEntry(
                fingerprint=fingerprint,
                description=f"{diagnostic.rule_id}: {diagnostic.message} ({diagnostic.path}:{diagnostic.line})",
                added=datetime.now(UTC).date().isoformat(),
            )
        )
        return True

    def add_all(self, diagnostics: Iterable[Diagnostic], root: Path) -> int:
        """Add diagnostics file by file, reading each file once."""

        added = 0
        for path, group in _group_by_path(diagnostics).items():
            lines = _read_lines(path)
            if lines is None:
                logger.warning("Cannot fingerprint findings in %s: file is unreadable", path)
                continue
            added += sum(1 for diagnostic in group if self.add(diagnostic, root, lines))
        return added

    @classmethod
    def from_diagnostics(cls, diagnostics: Iterable[Diagnostic], root: Path) -> Baseline:
        baseline = cls()
        baseline.add_all(diagnostics, root)
        return baseline

    def merge(self, other: Baseline) -> int:
        added = 0
        for entry in other.entries:
            if entry.fingerprint in self._fingerprints:
                continue
            self._append(entry)
            added += 1
        return added

    def filter(self, diagnostics: Sequence[Diagnostic], root: Path) -> list[Diagnostic]:
        """
        Drop diagnostics recorded in this baseline, keeping input order.

        Diagnostics whose file cannot be read or whose line is out of range
        are kept.
        """

        lines_by_path = {path: _read_lines(path) for path in _group_by_path(diagnostics)}
        out: list[Diagnostic] = []
        for diagnostic in diagnostics:
            lines = lines_by_path[diagnostic.path]
            fingerprint = Fingerprint.from_diagnostic(diagnostic, root, lines) if lines is not None else None
            if fingerprint is not None and fingerprint in self._fingerprints:
                continue
            out.append(diagnostic)
        return out


def _parse_entry(item: Any) -> BaselineEntry:
    if not isinstance(item, dict):
        raise BaselineError("Baseline entries must be objects.")
    fp = item.get("fingerprint")
    if not isinstance(fp, dict):
        raise BaselineError("Baseline entry is missing `fingerprint`.")
    rule_id = fp.get("rule_id")
    file_path = fp.get("file_path")
    code_hash = fp.get("code_hash")
    if not isinstance(rule_id, str) or not isinstance(file_path, str):
        raise BaselineError("Baseline fingerprint needs string `rule_id` and `file_path`.")
    if not isinstance(code_hash, int) or isinstance(code_hash, bool) or not 0 <= code_hash <= _U64_MASK:
        raise BaselineError("Baseline fingerprint `code_hash` must be an unsigned 64-bit integer.")
    description = item.get("description", "")
    added = item.get("added")
    if not isinstance(description, str) or (added is not None and not isinstance(added, str)):
        raise BaselineError("Baseline entry `description`/`added` must be strings.")
    return BaselineEntry(
        fingerprint=Fingerprint(rule_id=rule_id, file_path=file_path, code_hash=code_hash),
        description=description,
        added=added,
    )


def _group_by_path(diagnostics: Iterable[Diagnostic]) -> dict[Path, list[Diagnostic]]:
    grouped: dict[Path, list[Diagnostic]] = {}
    for diagnostic in diagnostics:
        grouped.setdefault(diagnostic.path, []).append(diagnostic)
    return grouped


def _read_lines(path: Path) -> list[str] | None:
    try:
        # No newline translation: line numbers must match the parser's rows.
        return source_lines(path.read_bytes().decode("utf-8"))
    except (OSError, UnicodeDecodeError):
        return None
