"""Application runner for Serverwatch.

Exit codes:
    0: clean shutdown, or a successful ``--once`` cycle
    1: a required dependency was unusable at startup, or ``--once`` failed
"""

from __future__ import annotations

import argparse

from serverwatch.bootstrap import BootstrapContext, bootstrap, create_serverwatch_from_context
from serverwatch.cli import parse_args
from serverwatch.exceptions import StartupDependencyError
from serverwatch.logging import get_logger

logger = get_logger(__name__)


def run_application(parsed: argparse.Namespace, context: BootstrapContext) -> int:
    """Run Serverwatch in the mode selected on the command line.

    Args:
        parsed: Parsed command-line arguments.
        context: Bootstrap context with all dependencies.

    Returns:
        Exit code for the application.
    """
    service = create_serverwatch_from_context(context)
    if parsed.once:
        logger.info("Running single discovery cycle (--once mode)")
        return 0 if service.run_once() else 1
    service.run()
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the application.

    Args:
        args: Optional list of command-line arguments.

    Returns:
        Exit code for the application.
    """
    parsed = parse_args(args)
    try:
        context = bootstrap(parsed)
        return run_application(parsed, context)
    except StartupDependencyError as e:
        logger.error(
            "Startup failed: %s",
            e,
            extra={"error_type": type(e).__name__},
        )
        return 1


__all__ = [
    "main",
    "run_application",
]
