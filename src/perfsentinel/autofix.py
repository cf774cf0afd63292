from __future__ import annotations

import difflib
import logging
import os
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from perfsentinel.engine.types import Diagnostic, Replacement

logger = logging.getLogger(__name__)


class FixError(Exception):
    """Base class for errors that abort a fix batch."""

    def __init__(self, path: Path, message: str) -> None:
        self.path = path
        super().__init__(message)


class PathTraversalError(FixError):
    def __init__(self, path: Path, base_dir: Path) -> None:
        self.base_dir = base_dir
        super().__init__(path, f"path traversal attempt: {path} is outside base directory {base_dir}")


class InvalidOffsetError(FixError):
    def __init__(self, path: Path, offset: int, length: int) -> None:
        self.offset = offset
        self.length = length
        super().__init__(path, f"invalid byte offset {offset} for file of length {length} in {path}")


class InvalidRangeError(FixError):
    def __init__(self, path: Path, start: int, end: int) -> None:
        self.start = start
        self.end = end
        super().__init__(path, f"start_byte {start} is greater than end_byte {end} in {path}")


class InvalidBoundaryError(FixError):
    def __init__(self, path: Path, offset: int) -> None:
        self.offset = offset
        super().__init__(path, f"byte offset {offset} is not on a UTF-8 character boundary in {path}")


class OverlappingReplacementError(FixError):
    def __init__(self, path: Path, first: Replacement, second: Replacement) -> None:
        self.first = first
        self.second = second
        super().__init__(
            path,
            f"overlapping replacements in {path}: "
            f"[{first.start_byte}, {first.end_byte}) and [{second.start_byte}, {second.end_byte})",
        )


class FixIOError(FixError):
    def __init__(self, path: Path, message: str) -> None:
        super().__init__(path, f"I/O error on {path}: {message}")


@dataclass(frozen=True, slots=True)
class FilePlan:
    """Validated edits for one file, not yet written."""

    path: Path
    original: bytes
    updated: bytes
    replacements: int

    @property
    def diff(self) -> str:
        before = self.original.decode("utf-8").splitlines()
        after = self.updated.decode("utf-8").splitlines()
        return "\n".join(
            difflib.unified_diff(before, after, fromfile=str(self.path), tofile=str(self.path), lineterm="")
        )


def group_replacements(diagnostics: Iterable[Diagnostic]) -> dict[Path, list[Replacement]]:
    """Replacements per target file, files in first-seen order, exact duplicates dropped."""

    by_file: dict[Path, list[Replacement]] = {}
    for diagnostic in diagnostics:
        if diagnostic.fix is None:
            continue
        for replacement in diagnostic.fix.replacements:
            group = by_file.setdefault(replacement.path, [])
            if replacement not in group:
                group.append(replacement)
    return by_file


def plan_fixes(diagnostics: Iterable[Diagnostic], base_dir: Path) -> list[FilePlan]:
    """
    Validate every fix and compute the patched contents.

    Raises a `FixError` subclass on the first invalid path or replacement;
    nothing is written either way.
    """

    try:
        base = base_dir.resolve(strict=True)
    except OSError as exc:
        raise FixIOError(base_dir, exc.strerror or str(exc)) from exc

    plans: list[FilePlan] = []
    for raw_path, replacements in group_replacements(diagnostics).items():
        path = validate_path(raw_path, base)
        original = _read_bytes(path)
        validate_replacements(path, original, replacements)
        plans.append(
            FilePlan(
                path=path,
                original=original,
                updated=apply_replacements(original, replacements),
                replacements=len(replacements),
            )
        )
    return plans


def apply_fixes(diagnostics: Iterable[Diagnostic], base_dir: Path) -> int:
    """
    Apply every machine fix carried by `diagnostics`; returns the number of replacements applied.

    All files are validated before the first write. Each file is then
    replaced atomically through a temporary file in the same directory.
    """

    plans = plan_fixes(diagnostics, base_dir)
    applied = 0
    for plan in plans:
        if plan.updated != plan.original:
            _write_atomic(plan.path, plan.updated)
            logger.info("Fixed %s (%d edit(s))", plan.path, plan.replacements)
        applied += plan.replacements
    return applied


def preview_fixes(diagnostics: Iterable[Diagnostic], base_dir: Path) -> dict[Path, str]:
    """Unified diff per file that `apply_fixes` would change."""

    return {plan.path: plan.diff for plan in plan_fixes(diagnostics, base_dir) if plan.updated != plan.original}


def validate_path(path: Path, base: Path) -> Path:
    """Canonical form of `path`; it must live under the canonical `base`."""

    candidate = path if path.is_absolute() else base / path
    try:
        if candidate.exists():
            resolved = candidate.resolve(strict=True)
        else:
            # Not created yet: canonicalize the parent and re-attach the name.
            if not candidate.name:
                raise PathTraversalError(candidate, base)
            resolved = candidate.parent.resolve(strict=True) / candidate.name
    except OSError as exc:
        raise FixIOError(candidate, exc.strerror or str(exc)) from exc
    if not resolved.is_relative_to(base):
        raise PathTraversalError(resolved, base)
    return resolved


def validate_replacements(path: Path, data: bytes, replacements: list[Replacement]) -> None:
    length = len(data)
    for rep in replacements:
        if rep.start_byte < 0 or rep.start_byte > length:
            raise InvalidOffsetError(path, rep.start_byte, length)
        if rep.end_byte < 0 or rep.end_byte > length:
            raise InvalidOffsetError(path, rep.end_byte, length)
        if rep.start_byte > rep.end_byte:
            raise InvalidRangeError(path, rep.start_byte, rep.end_byte)
        for offset in (rep.start_byte, rep.end_byte):
            if not _is_char_boundary(data, offset):
                raise InvalidBoundaryError(path, offset)

    ordered = sorted(replacements, key=lambda r: (r.start_byte, r.end_byte))
    for prev, cur in zip(ordered, ordered[1:]):
        # Two edits at one start offset have no well-defined order either.
        if cur.start_byte < prev.end_byte or cur.start_byte == prev.start_byte:
            raise OverlappingReplacementError(path, prev, cur)


def apply_replacements(data: bytes, replacements: Iterable[Replacement]) -> bytes:
    """Patch back to front so earlier offsets stay valid."""

    buffer = bytearray(data)
    for rep in sorted(replacements, key=lambda r: r.start_byte, reverse=True):
        buffer[rep.start_byte : rep.end_byte] = rep.new_text.encode("utf-8")
    return bytes(buffer)


def _is_char_boundary(data: bytes, offset: int) -> bool:
    if offset == len(data):
        return True
    # UTF-8 continuation bytes look like 0b10xxxxxx.
    return (data[offset] & 0xC0) != 0x80


def _read_bytes(path: Path) -> bytes:
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise FixIOError(path, exc.strerror or str(exc)) from exc
    try:
        data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FixIOError(path, f"invalid UTF-8: {exc.reason}") from exc
    return data


def _write_atomic(path: Path, data: bytes) -> None:
    try:
        mode = path.stat().st_mode & 0o7777 if path.exists() else None
        handle = tempfile.NamedTemporaryFile(
            mode="wb", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
        )
    except OSError as exc:
        raise FixIOError(path, exc.strerror or str(exc)) from exc

    temp_path = Path(handle.name)
    try:
        with handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        if mode is not None:
            os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except OSError as exc:
        temp_path.unlink(missing_ok=True)
        raise FixIOError(path, exc.strerror or str(exc)) from exc
