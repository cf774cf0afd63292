from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest
from helpers import write_rs

from perfsentinel.scanner import (
    DEFAULT_MAX_WORKERS,
    PERFSENTINEL_WORKERS_ENV,
    DiscoveryOptions,
    FileMissingError,
    FileReadError,
    FileTooLargeError,
    NotRegularFileError,
    discover_rust_files,
    read_file_secure,
    resolve_worker_count,
    worker_count_from_env,
)


def test_discovery_prunes_build_and_hidden_directories(tmp_path: Path) -> None:
    lib = write_rs(tmp_path, "src/lib.rs", "")
    nested = write_rs(tmp_path, "src/net/client.rs", "")
    write_rs(tmp_path, "target/debug/build.rs", "")
    write_rs(tmp_path, ".git/hooks/x.rs", "")
    write_rs(tmp_path, "build/gen.rs", "")
    write_rs(tmp_path, "node_modules/pkg/a.rs", "")
    write_rs(tmp_path, "notes.txt", "")

    assert discover_rust_files(tmp_path) == sorted([lib, nested])


def test_discovery_never_prunes_the_root_itself(tmp_path: Path) -> None:
    root = tmp_path / "target"
    inside = write_rs(root, "a.rs", "")
    assert discover_rust_files(root) == [inside]


def test_discovery_of_a_single_file(tmp_path: Path) -> None:
    path = write_rs(tmp_path, "main.rs", "fn main() {}\n")
    other = write_rs(tmp_path, "README.md", "")
    assert discover_rust_files(path) == [path]
    assert discover_rust_files(other) == []


def test_discovery_does_not_follow_symlinks(tmp_path: Path) -> None:
    outside = tmp_path / "outside"
    write_rs(outside, "secret.rs", "")
    project = tmp_path / "project"
    real = write_rs(project, "src/lib.rs", "")
    try:
        os.symlink(outside, project / "linked_dir")
        os.symlink(outside / "secret.rs", project / "src" / "linked.rs")
    except (OSError, NotImplementedError):
        pytest.skip("symlinks not supported")

    assert discover_rust_files(project) == [real]


def test_discovery_skips_oversized_files(tmp_path: Path) -> None:
    small = write_rs(tmp_path, "small.rs", "fn a() {}\n")
    write_rs(tmp_path, "big.rs", "// " + "x" * 100 + "\n")

    assert discover_rust_files(tmp_path, DiscoveryOptions(max_file_size=50)) == [small]
    assert len(discover_rust_files(tmp_path, DiscoveryOptions.fast())) == 2


def test_read_file_secure_reads_utf8(tmp_path: Path) -> None:
    path = write_rs(tmp_path, "a.rs", "// héllo\n")
    assert read_file_secure(path) == "// héllo\n"


def test_read_file_secure_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileMissingError):
        read_file_secure(tmp_path / "gone.rs")


def test_read_file_secure_rejects_directories(tmp_path: Path) -> None:
    with pytest.raises(NotRegularFileError):
        read_file_secure(tmp_path)


def test_read_file_secure_rejects_large_files(tmp_path: Path) -> None:
    path = write_rs(tmp_path, "a.rs", "x" * 64)
    with pytest.raises(FileTooLargeError) as excinfo:
        read_file_secure(path, max_size=10)
    assert (excinfo.value.size, excinfo.value.limit) == (64, 10)


def test_read_file_secure_rejects_invalid_utf8(tmp_path: Path) -> None:
    path = tmp_path / "bad.rs"
    path.write_bytes(b"fn f() {}\n\xff\xfe\n")
    with pytest.raises(FileReadError, match="invalid UTF-8"):
        read_file_secure(path)


@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="FIFOs not supported")
def test_discovery_warns_about_file_replaced_by_non_regular_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.WARNING)
    swapped = write_rs(tmp_path, "src/swapped.rs", "")
    kept = write_rs(tmp_path, "src/kept.rs", "")
    fifo = tmp_path / "pipe"
    os.mkfifo(fifo)
    real_lstat = os.lstat

    def lstat(path, *args, **kwargs):
        # Simulates the file turning into a FIFO after the directory listing.
        if Path(path) == swapped:
            return real_lstat(fifo)
        return real_lstat(path, *args, **kwargs)

    monkeypatch.setattr(os, "lstat", lstat)

    assert discover_rust_files(tmp_path) == [kept]
    assert f"skipping {swapped}: not a regular file" in caplog.text


@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="FIFOs not supported")
def test_read_file_secure_does_not_block_on_fifo(tmp_path: Path) -> None:
    fifo = tmp_path / "pipe.rs"
    os.mkfifo(fifo)
    with pytest.raises(NotRegularFileError):
        read_file_secure(fifo)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, 4),
        ("", 4),
        ("auto", 4),
        ("garbage", 4),
        ("0", 4),
        ("-3", 4),
        ("2", 2),
        (" 8 ", 8),
        ("1000", DEFAULT_MAX_WORKERS),
    ],
)
def test_resolve_worker_count(raw: str | None, expected: int) -> None:
    assert resolve_worker_count(raw, default=4) == expected


def test_worker_count_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(PERFSENTINEL_WORKERS_ENV, "3")
    assert worker_count_from_env(default=1) == 3
    monkeypatch.setenv(PERFSENTINEL_WORKERS_ENV, "nope")
    assert worker_count_from_env(default=1) == 1
