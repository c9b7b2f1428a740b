from __future__ import annotations

import shlex
import time
from pathlib import Path

import pytest

from prosit.store import MemoryStore, SQLStore


@pytest.fixture(params=["memory", "sql"])
def store(request, tmp_path):
    """Every store implementation, fresh per test."""
    if request.param == "memory":
        yield MemoryStore()
        return
    s = SQLStore(f"sqlite:///{tmp_path / 'prosit.db'}")
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def mem_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def wait_until():
    def _wait(predicate, timeout: float = 10.0, interval: float = 0.01) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not reached in time")
            time.sleep(interval)
    return _wait


@pytest.fixture
def gate(tmp_path):
    """
    gate(name) -> (cmd, open): cmd blocks until open() is called.
    Once opened, later runs of the same cmd pass straight through.
    """
    def _make(name: str, then: str = "true"):
        path: Path = tmp_path / f"gate-{name}"
        cmd = f"while [ ! -e {shlex.quote(str(path))} ]; do sleep 0.02; done; {then}"
        return cmd, path.touch
    return _make
