"""Retention sweep for long-offline servers."""

from __future__ import annotations

from datetime import timedelta

from serverwatch.exceptions import ReaperStoreError, StoreError
from serverwatch.logging import get_logger
from serverwatch.reconciler import Clock, utc_now
from serverwatch.state_tracker import StateTracker
from serverwatch.store import RegistryStore
from serverwatch.types import ServerStatus

logger = get_logger(__name__)


class Reaper:
    """Deletes records that have been offline for at least the retention window.

    Online records and unknown addresses are never touched. The deletion is
    one bulk store operation, so a failed sweep deletes nothing.
    """

    def __init__(
        self,
        store: RegistryStore,
        retention_days: int = 7,
        clock: Clock = utc_now,
        state_tracker: StateTracker | None = None,
    ) -> None:
        self.store = store
        self.retention = timedelta(days=retention_days)
        self._clock = clock
        self.state_tracker = state_tracker

    def sweep(self) -> int:
        """Delete every offline record whose ``offline_since`` is older than the window.

        Returns:
            Number of records deleted.

        Raises:
            ReaperStoreError: If the store failed; nothing was deleted.
        """
        now = self._clock()
        cutoff = now - self.retention
        try:
            deleted = self.store.delete_where(ServerStatus.OFFLINE, cutoff)
        except StoreError as e:
            raise ReaperStoreError(f"Retention sweep failed: {e}") from e

        if deleted:
            logger.info("Deleted %s servers offline since before %s", deleted, cutoff.isoformat())
        else:
            logger.debug("Retention sweep found nothing to delete")
        if self.state_tracker is not None:
            self.state_tracker.record_sweep(deleted, now)
        return deleted


__all__ = ["Reaper"]
