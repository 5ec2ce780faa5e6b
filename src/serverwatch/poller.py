"""Discovery poller: turns a master directory listing into probe tasks."""

from __future__ import annotations

import threading

from serverwatch.config import DEFAULT_DIRECTORY_FILTER
from serverwatch.directory import MasterDirectory
from serverwatch.dispatcher import DispatchBatcher
from serverwatch.exceptions import DirectoryUnavailable, QueueClosedError
from serverwatch.logging import get_logger
from serverwatch.state_tracker import StateTracker

logger = get_logger(__name__)


class DiscoveryPoller:
    """Queries the master directory and feeds the dispatch batcher.

    ``poll`` is single-flight on its own: a call made while another is
    still running returns immediately without touching the directory. A
    cycle is also skipped while the previous cycle still has tasks queued
    or in flight, so the queue never holds more than one cycle of work. A
    failed listing changes nothing; the next attempt is the next scheduled
    tick.
    """

    def __init__(
        self,
        directory: MasterDirectory,
        batcher: DispatchBatcher,
        directory_filter: str = DEFAULT_DIRECTORY_FILTER,
        state_tracker: StateTracker | None = None,
    ) -> None:
        self.directory = directory
        self.batcher = batcher
        self.directory_filter = directory_filter
        self.state_tracker = state_tracker or StateTracker()
        self._poll_lock = threading.Lock()

    def poll(self) -> set[str] | None:
        """Run one discovery cycle.

        Returns:
            The deduplicated addresses handed to the batcher, or None if the
            cycle was skipped or the directory was unavailable.
        """
        if not self._poll_lock.acquire(blocking=False):
            logger.info("Discovery already in progress, skipping")
            return None
        try:
            return self._poll()
        finally:
            self._poll_lock.release()

    def _poll(self) -> set[str] | None:
        queue = self.batcher.queue
        outstanding = queue.pending() + queue.in_flight()
        if outstanding:
            logger.info(
                "Skipping discovery: previous cycle %s still has %s task(s) outstanding",
                self.state_tracker.current_cycle,
                outstanding,
            )
            self.state_tracker.record_skipped_tick("discovery")
            return None

        try:
            addresses = self.directory.list(self.directory_filter)
        except DirectoryUnavailable as e:
            logger.warning(
                "Discovery failed, retrying at next tick: %s",
                e,
                extra={"error_type": type(e).__name__},
            )
            return None

        cycle = self.state_tracker.begin_cycle(len(addresses))
        logger.with_context(cycle=cycle).info("Discovered %s servers", len(addresses))
        try:
            self.batcher.dispatch(addresses, cycle=cycle)
        except QueueClosedError as e:
            logger.warning(
                "Dispatch interrupted by shutdown: %s",
                e,
                extra={"cycle": cycle, "error_type": type(e).__name__},
            )
            return None
        return addresses


__all__ = ["DiscoveryPoller"]
