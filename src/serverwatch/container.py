"""Dependency Injection container for the Serverwatch application.

This module wires the collaborators that sit at the edges of the pipeline
(registry store, master directory, probe client) using the
dependency-injector library. Every collaborator is explicitly constructed
and owned; nothing is a module-level singleton.

Usage:
    # Production setup
    container = create_container(config)
    service = container.serverwatch()

    # Test setup with fakes
    container = create_test_container(config)
    container.clients.directory.override(providers.Object(StaticDirectory([...])))
    container.clients.probe_client.override(providers.Object(MockProbeClient()))
    container.store.override(providers.Object(MemoryRegistryStore()))
    service = container.serverwatch()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from dependency_injector import containers, providers

if TYPE_CHECKING:
    from serverwatch.config import Config
    from serverwatch.directory import MasterDirectory
    from serverwatch.main import Serverwatch
    from serverwatch.probe import ProbeClient
    from serverwatch.state_tracker import StateTracker
    from serverwatch.store import RegistryStore


class ClientsContainer(containers.DeclarativeContainer):
    """Container for network clients (master directory, per-server probe)."""

    config: providers.Dependency[Config] = providers.Dependency()

    directory: providers.Dependency[MasterDirectory] = providers.Dependency()
    probe_client: providers.Dependency[ProbeClient] = providers.Dependency()


class ServerwatchContainer(containers.DeclarativeContainer):
    """Root container for the Serverwatch application.

    ServerwatchContainer
    ├── config (Config)
    ├── store (RegistryStore)
    ├── state_tracker (StateTracker)
    ├── clients (ClientsContainer)
    │   ├── directory
    │   └── probe_client
    └── serverwatch (Serverwatch)
    """

    config: providers.Dependency[Config] = providers.Dependency()

    clients = providers.Container(
        ClientsContainer,
        config=config,
    )

    store: providers.Dependency[RegistryStore] = providers.Dependency()
    state_tracker: providers.Dependency[StateTracker] = providers.Dependency()

    # Overridden at runtime with a Factory
    serverwatch: providers.Dependency[Serverwatch] = providers.Dependency()


def create_store(config: Config) -> RegistryStore:
    """Create the registry store selected by ``config.store.backend``.

    Args:
        config: Application configuration.

    Returns:
        MemoryRegistryStore or SqliteRegistryStore.
    """
    from serverwatch.store import MemoryRegistryStore, SqliteRegistryStore
    from serverwatch.types import StoreBackend

    if config.store.backend == StoreBackend.MEMORY:
        return MemoryRegistryStore()
    return SqliteRegistryStore(config.store.db_path, busy_timeout=config.store.busy_timeout)


def create_directory(config: Config) -> MasterDirectory:
    """Create the Steam Web API directory client.

    Args:
        config: Application configuration.

    Returns:
        SteamWebDirectory configured from ``config.polling``.
    """
    from serverwatch.directory import SteamWebDirectory

    return SteamWebDirectory(
        api_key=config.polling.steam_api_key,
        base_url=config.polling.directory_url,
        limit=config.polling.directory_limit,
        timeout=config.polling.directory_timeout,
    )


def create_probe_client(config: Config) -> ProbeClient:
    """Create the A2S probe client.

    Args:
        config: Application configuration.

    Returns:
        A2SProbeClient configured from ``config.probe``.
    """
    from serverwatch.probe import A2SProbeClient

    probe = config.probe
    return A2SProbeClient(
        request_rules=probe.request_rules,
        attempt_grace=probe.attempt_timeout_seconds - probe.timeout_seconds,
    )


def create_state_tracker() -> StateTracker:
    from serverwatch.state_tracker import StateTracker

    return StateTracker()


def create_serverwatch(
    config: Config,
    store: RegistryStore,
    directory: MasterDirectory,
    probe_client: ProbeClient,
    state_tracker: StateTracker,
) -> Serverwatch:
    """Create a Serverwatch instance with all dependencies.

    Args:
        config: Application configuration.
        store: Registry store.
        directory: Master directory client.
        probe_client: Per-server probe client.
        state_tracker: Pipeline counters.

    Returns:
        Configured Serverwatch instance.
    """
    from serverwatch.main import Serverwatch

    return Serverwatch(
        config=config,
        store=store,
        directory=directory,
        probe_client=probe_client,
        state_tracker=state_tracker,
    )


def _wire_serverwatch(container: ServerwatchContainer) -> None:
    container.serverwatch.override(
        providers.Factory(
            create_serverwatch,
            config=container.config,
            store=container.store,
            directory=container.clients.directory,
            probe_client=container.clients.probe_client,
            state_tracker=container.state_tracker,
        )
    )


def create_container(config: Config | None = None) -> ServerwatchContainer:
    """Create and configure the main DI container.

    Args:
        config: Optional configuration. If not provided, loads from environment.

    Returns:
        Fully configured ServerwatchContainer ready for use.
    """
    from serverwatch.config import load_config

    if config is None:
        config = load_config()

    container = ServerwatchContainer()
    container.config.override(providers.Object(config))

    container.store.override(providers.Singleton(create_store, config))
    container.state_tracker.override(providers.Singleton(create_state_tracker))
    container.clients.directory.override(providers.Singleton(create_directory, config))
    container.clients.probe_client.override(providers.Singleton(create_probe_client, config))

    _wire_serverwatch(container)
    return container


def create_test_container(config: Config | None = None) -> ServerwatchContainer:
    """Create a container pre-configured for testing.

    The store, directory and probe client stay as Dependency() providers and
    must be overridden before ``container.serverwatch()`` is called;
    accessing them un-overridden raises ``dependency_injector.errors.Error``.
    The state tracker is a fresh singleton.

    Args:
        config: Optional test configuration (defaults to ``Config()``).

    Returns:
        ServerwatchContainer with the edge collaborators left open.
    """
    from serverwatch.config import Config as ConfigClass

    container = ServerwatchContainer()
    container.config.override(providers.Object(config or ConfigClass()))
    container.state_tracker.override(providers.Singleton(create_state_tracker))
    _wire_serverwatch(container)
    return container


__all__ = [
    "ClientsContainer",
    "ServerwatchContainer",
    "create_container",
    "create_directory",
    "create_probe_client",
    "create_serverwatch",
    "create_state_tracker",
    "create_store",
    "create_test_container",
]
