from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path


class Severity(IntEnum):
    """Diagnostic severity. Ordered: INFO < WARNING < ERROR."""

    INFO = 0
    WARNING = 1
    ERROR = 2

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: str) -> Severity:
        normalized = value.strip().lower()
        try:
            return _SEVERITY_ALIASES[normalized]
        except KeyError:
            raise ValueError(f"Unknown severity: {value!r} (expected info, warning, error)") from None

    def __str__(self) -> str:
        return self.label


_SEVERITY_ALIASES: dict[str, Severity] = {
    "info": Severity.INFO,
    "note": Severity.INFO,
    "warn": Severity.WARNING,
    "warning": Severity.WARNING,
    "error": Severity.ERROR,
    "deny": Severity.ERROR,
}


@dataclass(frozen=True, slots=True)
class Replacement:
    path: Path
    start_byte: int  # inclusive, UTF-8 byte offset
    end_byte: int  # exclusive
    new_text: str


@dataclass(frozen=True, slots=True)
class Fix:
    description: str
    replacements: tuple[Replacement, ...]


@dataclass(frozen=True, slots=True)
class Diagnostic:
    rule_id: str
    severity: Severity
    message: str
    path: Path
    line: int  # 1-based
    column: int  # 1-based
    end_line: int | None = None
    end_column: int | None = None
    suggestion: str | None = None
    fix: Fix | None = None
