from __future__ import annotations

import logging

import pytest

from perfsentinel.scanner import PERFSENTINEL_WORKERS_ENV


@pytest.fixture(autouse=True)
def _isolate_worker_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(PERFSENTINEL_WORKERS_ENV, raising=False)


@pytest.fixture(autouse=True)
def _restore_root_logging():
    # CLI invocations reconfigure the root logger onto CliRunner's streams.
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
