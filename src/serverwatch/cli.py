"""Command-line interface argument parsing for Serverwatch."""

from __future__ import annotations

import argparse
from pathlib import Path

from serverwatch.types import StoreBackend


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        args: Optional list of arguments to parse. If None, uses sys.argv.

    Returns:
        Parsed arguments namespace with the following attributes:
        - once: Run one discovery cycle and one sweep, then exit
        - interval: Discovery interval in seconds
        - log_level: Logging level
        - env_file: Path to .env file
        - db_path: SQLite database path
        - store: Store backend
    """
    parser = argparse.ArgumentParser(
        prog="serverwatch",
        description="Serverwatch - live registry of game servers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one discovery cycle, wait for its probes, sweep once and exit",
    )

    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Discovery interval in seconds (overrides SERVERWATCH_POLL_INTERVAL)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (overrides SERVERWATCH_LOG_LEVEL)",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: ./.env)",
    )

    parser.add_argument(
        "--db-path",
        type=Path,
        default=None,
        help="SQLite database path (overrides SERVERWATCH_DB_PATH)",
    )

    parser.add_argument(
        "--store",
        choices=sorted(StoreBackend.values()),
        default=None,
        help="Registry store backend (overrides SERVERWATCH_STORE)",
    )

    return parser.parse_args(args)


__all__ = ["parse_args"]
