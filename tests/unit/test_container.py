"""Tests for the DI container."""

from __future__ import annotations

from pathlib import Path

import pytest
from dependency_injector import errors, providers

from serverwatch.container import (
    create_container,
    create_probe_client,
    create_store,
    create_test_container,
)
from serverwatch.directory import StaticDirectory, SteamWebDirectory
from serverwatch.main import Serverwatch
from serverwatch.probe import A2SProbeClient
from serverwatch.store import MemoryRegistryStore, SqliteRegistryStore
from tests.helpers import make_config
from tests.mocks import MockProbeClient


class TestCreateStore:
    def test_memory_backend(self) -> None:
        assert isinstance(create_store(make_config(backend="memory")), MemoryRegistryStore)

    def test_sqlite_backend(self, tmp_path: Path) -> None:
        store = create_store(make_config(backend="sqlite", db_path=tmp_path / "registry.db"))
        assert isinstance(store, SqliteRegistryStore)
        assert store.db_path == tmp_path / "registry.db"


class TestCreateProbeClient:
    def test_attempt_deadline_from_config(self) -> None:
        client = create_probe_client(make_config(timeout_ms=2500))

        assert isinstance(client, A2SProbeClient)
        assert client.attempt_grace == pytest.approx(1.0)
        assert client.request_players is False


class TestCreateContainer:
    def test_production_wiring(self) -> None:
        container = create_container(make_config())

        assert isinstance(container.clients.directory(), SteamWebDirectory)
        assert isinstance(container.clients.probe_client(), A2SProbeClient)
        assert container.store() is container.store()

        service = container.serverwatch()
        assert isinstance(service, Serverwatch)
        assert service.store is container.store()
        assert service.state_tracker is container.state_tracker()
        container.clients.directory().close()

    def test_each_serverwatch_call_builds_new_service(self) -> None:
        container = create_container(make_config())
        assert container.serverwatch() is not container.serverwatch()
        container.clients.directory().close()


class TestCreateTestContainer:
    def test_edge_dependencies_must_be_overridden(self) -> None:
        container = create_test_container(make_config())
        with pytest.raises(errors.Error):
            container.store()
        with pytest.raises(errors.Error):
            container.clients.directory()

    def test_overrides(self) -> None:
        config = make_config()
        store = MemoryRegistryStore()
        directory = StaticDirectory(["203.0.113.1:27015"])
        client = MockProbeClient()
        container = create_test_container(config)
        container.store.override(providers.Object(store))
        container.clients.directory.override(providers.Object(directory))
        container.clients.probe_client.override(providers.Object(client))

        service = container.serverwatch()

        assert service.config is config
        assert service.store is store
        assert service.directory is directory
        assert service.probe_client is client
