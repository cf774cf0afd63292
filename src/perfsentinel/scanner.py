from __future__ import annotations

import errno
import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024
RUST_SUFFIX = ".rs"

EXCLUDED_DIRS = frozenset(
    {
        "target",
        "node_modules",
        "vendor",
        "third_party",
        "build",
        "dist",
        "out",
    }
)

PERFSENTINEL_WORKERS_ENV = "PERFSENTINEL_WORKERS"
DEFAULT_MAX_WORKERS = 32


class FileReadError(Exception):
    """Raised when a source file cannot be read safely."""

    def __init__(self, path: Path, message: str) -> None:
        self.path = path
        super().__init__(f"{path}: {message}")


class FileMissingError(FileReadError):
    """The file disappeared between discovery and read."""


class NotRegularFileError(FileReadError):
    """The path is a directory, FIFO, device or other non-regular file."""


class FileTooLargeError(FileReadError):
    def __init__(self, path: Path, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(path, f"file is too large ({size} bytes, limit {limit})")


@dataclass(frozen=True, slots=True)
class DiscoveryOptions:
    check_file_size: bool = True
    security_checks: bool = True
    max_file_size: int = MAX_FILE_SIZE

    @classmethod
    def secure(cls) -> DiscoveryOptions:
        return cls(check_file_size=True, security_checks=True)

    @classmethod
    def fast(cls) -> DiscoveryOptions:
        return cls(check_file_size=False, security_checks=False)


def resolve_worker_count(
    raw_value: str | None,
    *,
    default: int | None = None,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> int:
    """
    Resolve a safe worker count from an env var-style string.

    - None/""/"auto" fall back to the default (CPU count)
    - Values <= 0 or garbage fall back to the default
    - Values above `max_workers` are clamped
    """

    resolved_default = max(1, default if default is not None else (os.cpu_count() or 1))
    fallback = min(resolved_default, max_workers)
    if raw_value is None:
        return fallback

    normalized = raw_value.strip().lower()
    if not normalized or normalized in {"auto", "default"}:
        return fallback

    try:
        workers = int(normalized)
    except ValueError:
        return fallback

    if workers <= 0:
        return fallback
    return min(workers, max_workers)


def worker_count_from_env(*, default: int | None = None) -> int:
    return resolve_worker_count(os.environ.get(PERFSENTINEL_WORKERS_ENV), default=default)


def is_excluded_dir(name: str) -> bool:
    return name in EXCLUDED_DIRS or name.startswith(".")


def discover_rust_files(root: Path, options: DiscoveryOptions | None = None) -> list[Path]:
    """
    Return every `.rs` file under `root`, sorted.

    Build output and hidden directories are pruned (the root itself is never
    pruned). Symlinks are never followed. With security checks enabled every
    candidate is re-stat'ed without following links, and non-regular or
    oversized files are skipped.
    """

    opts = options or DiscoveryOptions.secure()

    if root.is_file():
        if root.suffix != RUST_SUFFIX:
            return []
        return [root] if _accept_candidate(root, opts) else []

    files: list[Path] = []
    stack: list[Path] = [root]
    while stack:
        directory = stack.pop()
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except OSError as exc:
            logger.warning("skipping unreadable directory %s: %s", directory, exc)
            continue

        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    if not is_excluded_dir(entry.name):
                        stack.append(Path(entry.path))
                    continue
                if not entry.is_file(follow_symlinks=False):
                    continue
            except OSError as exc:
                logger.warning("skipping %s: %s", entry.path, exc)
                continue

            if not entry.name.endswith(RUST_SUFFIX):
                continue
            path = Path(entry.path)
            if _accept_candidate(path, opts):
                files.append(path)

    return sorted(files)


def _accept_candidate(path: Path, opts: DiscoveryOptions) -> bool:
    if not opts.security_checks and not opts.check_file_size:
        return True

    # Cached DirEntry data may be stale; look again without following links.
    try:
        st = os.lstat(path)
    except OSError as exc:
        logger.warning("skipping %s: cannot read metadata: %s", path, exc)
        return False

    if opts.security_checks and not stat.S_ISREG(st.st_mode):
        logger.warning("skipping %s: not a regular file", path)
        return False

    if opts.check_file_size and st.st_size > opts.max_file_size:
        logger.warning(
            "skipping %s: file is too large (%d bytes, limit %d)",
            path,
            st.st_size,
            opts.max_file_size,
        )
        return False
    return True


def read_file_secure(path: Path, *, max_size: int = MAX_FILE_SIZE) -> str:
    """
    Read a UTF-8 source file without a check-then-read race.

    The file is opened first and every check runs against the open
    descriptor, so a file swapped between discovery and read is still
    validated. O_NONBLOCK keeps a FIFO from blocking the open.
    """

    flags = os.O_RDONLY | getattr(os, "O_NONBLOCK", 0) | getattr(os, "O_CLOEXEC", 0)
    try:
        fd = os.open(path, flags)
    except FileNotFoundError as exc:
        raise FileMissingError(path, "file not found") from exc
    except IsADirectoryError as exc:
        raise NotRegularFileError(path, "not a regular file") from exc
    except OSError as exc:
        if exc.errno == errno.ENXIO:
            # Unix sockets cannot be opened as files.
            raise NotRegularFileError(path, "not a regular file") from exc
        raise FileReadError(path, exc.strerror or str(exc)) from exc

    try:
        st = os.fstat(fd)
        if not stat.S_ISREG(st.st_mode):
            raise NotRegularFileError(path, "not a regular file")
        if st.st_size > max_size:
            raise FileTooLargeError(path, st.st_size, max_size)
        with os.fdopen(fd, "rb", closefd=False) as handle:
            # Read one byte past the limit in case the file grew after fstat.
            data = handle.read(max_size + 1)
    except OSError as exc:
        raise FileReadError(path, exc.strerror or str(exc)) from exc
    finally:
        os.close(fd)

    if len(data) > max_size:
        raise FileTooLargeError(path, len(data), max_size)
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FileReadError(path, f"invalid UTF-8: {exc.reason}") from exc
