"""Signal handling for graceful shutdown.

SIGINT and SIGTERM request shutdown instead of killing the process; the
service then stops its schedulers, lets in-flight probes finish up to the
drain deadline and closes its resources. A second signal while shutdown is
already under way is logged and otherwise ignored.
"""

from __future__ import annotations

import signal
import threading
from collections.abc import Callable
from types import FrameType
from typing import Any

from serverwatch.logging import get_logger

logger = get_logger(__name__)

_HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownHandler:
    """Turns termination signals into a shutdown request.

    The request is exposed as a ``threading.Event`` so the main thread can
    block on it with ``wait()`` while worker threads do the actual work.
    """

    def __init__(self, on_shutdown: Callable[[], None] | None = None) -> None:
        """Initialize the shutdown handler.

        Args:
            on_shutdown: Optional callback invoked once, on the first request.
        """
        self._event = threading.Event()
        self._on_shutdown = on_shutdown
        self._previous: dict[int, Any] = {}

    @property
    def shutdown_requested(self) -> bool:
        return self._event.is_set()

    def request_shutdown(self) -> None:
        """Request shutdown; repeated requests are no-ops."""
        if self._event.is_set():
            logger.info("Shutdown already in progress")
            return
        logger.info("Shutdown requested")
        self._event.set()
        if self._on_shutdown is not None:
            self._on_shutdown()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until shutdown is requested.

        Returns:
            True if shutdown was requested, False on timeout.
        """
        return self._event.wait(timeout)

    def handle_signal(self, signum: int, frame: FrameType | None) -> None:
        logger.info("Received %s, shutting down...", signal.Signals(signum).name)
        self.request_shutdown()

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to this handler.

        Only the main thread may install signal handlers; elsewhere this
        logs and does nothing.
        """
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, signal handlers not installed")
            return
        for signum in _HANDLED_SIGNALS:
            self._previous[signum] = signal.signal(signum, self.handle_signal)
        logger.debug("Signal handlers installed for SIGINT and SIGTERM")

    def restore_signal_handlers(self) -> None:
        """Put back the handlers that were active before installation."""
        for signum, previous in self._previous.items():
            signal.signal(signum, previous)
        self._previous.clear()


__all__ = ["ShutdownHandler"]
