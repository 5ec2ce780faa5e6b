"""State reconciliation: applies probe outcomes to the registry store.

Each address moves through a small state machine with hysteresis::

    unknown --Hit--> online --Miss x threshold--> offline --Hit--> online

A Miss on an unknown address is a no-op, so failed probes never create
records. The transition itself (``apply_outcome``) is a pure function; the
``StateReconciler`` runs it inside the store's atomic ``modify`` so that two
reconciliations of the same address can never interleave.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime

from serverwatch.exceptions import ReconcileStoreError, StoreError
from serverwatch.logging import get_logger
from serverwatch.models import ProbeOutcome, ServerRecord, snapshot_fields
from serverwatch.store import RegistryStore
from serverwatch.types import ServerStatus

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def apply_outcome(
    current: ServerRecord | None,
    outcome: ProbeOutcome,
    now: datetime,
    offline_threshold: int,
) -> ServerRecord | None:
    """Compute the next record state for one probe outcome.

    Args:
        current: Stored record, or None if the address is unknown.
        outcome: Hit or Miss for the address.
        now: Reconciliation time.
        offline_threshold: Consecutive misses before an online record is
            demoted to offline.

    Returns:
        The record to store, or None when nothing should be written.
    """
    if outcome.is_hit:
        if outcome.snapshot is None:
            raise ValueError(f"Hit outcome for {outcome.address} carries no snapshot")
        if current is None:
            return ServerRecord.from_snapshot(outcome.address, outcome.snapshot, now)
        if current.status == ServerStatus.OFFLINE:
            seen_count = 1
        else:
            seen_count = current.seen_count + 1
        return replace(
            current,
            status=ServerStatus.ONLINE,
            seen_count=seen_count,
            missed_count=0,
            offline_since=None,
            updated_at=now,
            **snapshot_fields(outcome.snapshot),
        )

    if current is None:
        return None
    missed_count = current.missed_count + 1
    if current.status == ServerStatus.OFFLINE:
        # offline_since marks the transition and is never rewritten
        return replace(current, seen_count=0, missed_count=missed_count)
    if missed_count >= offline_threshold:
        return replace(
            current,
            status=ServerStatus.OFFLINE,
            seen_count=0,
            missed_count=missed_count,
            offline_since=now,
        )
    return replace(current, seen_count=0, missed_count=missed_count)


class StateReconciler:
    """Applies probe outcomes to the registry store, one atomic transition per call."""

    def __init__(
        self,
        store: RegistryStore,
        offline_threshold: int = 3,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the reconciler.

        Args:
            store: Registry store holding server records.
            offline_threshold: Consecutive misses before demotion to offline.
            clock: Source of reconciliation timestamps.
        """
        if offline_threshold < 1:
            raise ValueError("offline_threshold must be at least 1")
        self.store = store
        self.offline_threshold = offline_threshold
        self._clock = clock

    def reconcile(self, address: str, outcome: ProbeOutcome) -> ServerRecord | None:
        """Apply one outcome to one address.

        Args:
            address: The ``ip:port`` being reconciled.
            outcome: Hit or Miss for that address.

        Returns:
            The stored record after the transition, or None if the address
            remains unknown.

        Raises:
            ReconcileStoreError: If the store failed; the address keeps its
                previous state.
        """
        if outcome.address != address:
            raise ValueError(f"Outcome for {outcome.address} applied to {address}")
        previous: list[ServerRecord | None] = []

        def transition(current: ServerRecord | None) -> ServerRecord | None:
            previous.append(current)
            return apply_outcome(current, outcome, self._clock(), self.offline_threshold)

        try:
            updated = self.store.modify(address, transition)
        except StoreError as e:
            raise ReconcileStoreError(address, f"Failed to reconcile {address}: {e}") from e

        # the last transform call is the one that was committed
        before = previous[-1] if previous else None
        self._log_transition(address, before, updated)
        return updated

    @staticmethod
    def _log_transition(
        address: str,
        before: ServerRecord | None,
        after: ServerRecord | None,
    ) -> None:
        if after is None:
            return
        log = logger.with_context(address=address)
        if before is None:
            log.debug("New server %s (%s)", after.name, after.gamemode)
        elif before.status != after.status:
            if after.status == ServerStatus.OFFLINE:
                log.info(
                    "Server marked offline after %s consecutive misses",
                    after.missed_count,
                    extra={"status": str(after.status)},
                )
            else:
                log.info("Server back online", extra={"status": str(after.status)})


__all__ = [
    "Clock",
    "StateReconciler",
    "apply_outcome",
    "utc_now",
]
