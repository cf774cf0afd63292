from __future__ import annotations

from pathlib import Path


def _resolve(path: Path) -> Path:
    try:
        return path.resolve()
    except OSError:
        return path


def safe_relpath(path: Path, root: Path) -> str:
    """POSIX-style `path` relative to `root`; `path` as given when it lies outside `root`."""

    try:
        return _resolve(path).relative_to(_resolve(root)).as_posix()
    except ValueError:
        return path.as_posix()
