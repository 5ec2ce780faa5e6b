"""Bootstrap and dependency wiring for Serverwatch.

This module is the composition root: it loads configuration, applies CLI
overrides, configures logging, builds the DI container and verifies the
dependencies the pipeline cannot run without. A registry store that cannot
be opened is fatal (``StartupDependencyError``); the process exits
non-zero instead of running a pipeline that can make no progress.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from serverwatch.config import Config, load_config
from serverwatch.container import ServerwatchContainer, create_container
from serverwatch.exceptions import StartupDependencyError, StoreError
from serverwatch.logging import get_logger, setup_logging

if TYPE_CHECKING:
    from serverwatch.main import Serverwatch

logger = get_logger(__name__)


@dataclass
class BootstrapContext:
    """Everything needed to create the Serverwatch service."""

    config: Config
    container: ServerwatchContainer


def apply_cli_overrides(config: Config, parsed: argparse.Namespace) -> Config:
    """Apply CLI argument overrides to the configuration.

    Args:
        config: Base configuration loaded from environment.
        parsed: Parsed command-line arguments.

    Returns:
        New Config instance with CLI overrides applied.
    """
    overrides: dict[str, Any] = {}

    if parsed.interval:
        overrides["polling"] = replace(config.polling, interval_seconds=parsed.interval)
    if parsed.log_level:
        overrides["logging_config"] = replace(config.logging_config, level=parsed.log_level)

    store_overrides: dict[str, Any] = {}
    if parsed.db_path:
        store_overrides["db_path"] = parsed.db_path
    if parsed.store:
        store_overrides["backend"] = parsed.store
    if store_overrides:
        overrides["store"] = replace(config.store, **store_overrides)

    if overrides:
        return replace(config, **overrides)
    return config


def verify_dependencies(container: ServerwatchContainer) -> None:
    """Open and check the registry store.

    Raises:
        StartupDependencyError: If the store is unusable.
    """
    try:
        container.store().verify()
    except StoreError as e:
        raise StartupDependencyError("store", f"Registry store unavailable: {e}") from e


def bootstrap(parsed: argparse.Namespace) -> BootstrapContext:
    """Bootstrap the application with all dependencies.

    Args:
        parsed: Parsed command-line arguments.

    Returns:
        BootstrapContext with the configured container.

    Raises:
        StartupDependencyError: If a required dependency is unusable.
    """
    config = load_config(parsed.env_file)
    config = apply_cli_overrides(config, parsed)

    setup_logging(
        config.logging_config.level,
        json_format=config.logging_config.json,
        diagnostic_tags=config.logging_config.diagnostic_tags,
    )

    if not config.polling.steam_api_key:
        logger.warning("STEAM_API_KEY is not set; the directory will likely reject discovery")

    container = create_container(config)
    verify_dependencies(container)
    logger.info("Using %s registry store", config.store.backend)

    return BootstrapContext(config=config, container=container)


def create_serverwatch_from_context(context: BootstrapContext) -> Serverwatch:
    """Create the Serverwatch service from a bootstrap context."""
    return context.container.serverwatch()


__all__ = [
    "BootstrapContext",
    "apply_cli_overrides",
    "bootstrap",
    "create_serverwatch_from_context",
    "verify_dependencies",
]
