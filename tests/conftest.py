"""Shared pytest fixtures for Serverwatch tests.

The ``store`` fixture is parametrized over both registry store backends so
contract tests run against each of them.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from serverwatch.store import MemoryRegistryStore, RegistryStore, SqliteRegistryStore
from tests.helpers import FakeClock


@pytest.fixture
def memory_store() -> MemoryRegistryStore:
    return MemoryRegistryStore()


@pytest.fixture
def sqlite_store(tmp_path: Path) -> Iterator[SqliteRegistryStore]:
    store = SqliteRegistryStore(tmp_path / "registry.db", busy_timeout=5.0)
    store.verify()
    yield store
    store.close()


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[RegistryStore]:
    """Each registry store backend in turn."""
    if request.param == "memory":
        yield MemoryRegistryStore()
        return
    sqlite = SqliteRegistryStore(tmp_path / "registry.db", busy_timeout=5.0)
    sqlite.verify()
    yield sqlite
    sqlite.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    """Undo setup_logging() side effects so caplog keeps working across tests."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    levels = {name: logging.getLogger(name).level for name in ("serverwatch", "httpx")}
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, saved in levels.items():
        logging.getLogger(name).setLevel(saved)
