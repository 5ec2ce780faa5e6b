"""Runtime counters for the Serverwatch pipeline.

This module provides the StateTracker class which records:
- When discovery last succeeded and how many addresses it returned
- Per-cycle probe hit and miss counts
- Reconciliation store failures
- Ticks skipped by the single-flight rule
- Retention sweep results

None of this state is persisted; it exists so an operator (or a test) can
observe what the pipeline is doing. ``Serverwatch.get_stats()`` exposes a
snapshot of it.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime


@dataclass(frozen=True)
class CycleStats:
    """Probe results of one discovery cycle."""

    cycle: int
    discovered: int
    hits: int = 0
    misses: int = 0
    store_errors: int = 0
    started_at: datetime | None = None


@dataclass
class PipelineStats:
    """Point-in-time snapshot of the tracker, safe to hand to callers."""

    start_time: datetime
    last_successful_discovery: datetime | None
    last_discovered_count: int
    current_cycle: int
    total_hits: int
    total_misses: int
    total_store_errors: int
    last_sweep: datetime | None
    last_sweep_deleted: int
    total_deleted: int
    skipped_ticks: dict[str, int] = field(default_factory=dict)
    cycles: list[CycleStats] = field(default_factory=list)


class StateTracker:
    """Tracks discovery, probe and sweep counters.

    Thread Safety:
        Workers record outcomes concurrently; every public method takes the
        single internal lock for its whole duration.
    """

    def __init__(self, max_cycles: int = 10) -> None:
        """Initialize the state tracker.

        Args:
            max_cycles: Number of recent cycles kept for per-cycle stats.
        """
        self._max_cycles = max_cycles
        self._lock = threading.Lock()

        self._start_time = datetime.now(UTC)
        self._last_successful_discovery: datetime | None = None
        self._last_discovered_count = 0
        self._current_cycle = 0

        # Per-cycle counters, keyed by cycle number (oldest evicted first)
        self._cycles: dict[int, CycleStats] = {}

        self._total_hits = 0
        self._total_misses = 0
        self._total_store_errors = 0

        self._skipped_ticks: defaultdict[str, int] = defaultdict(int)

        self._last_sweep: datetime | None = None
        self._last_sweep_deleted = 0
        self._total_deleted = 0

    @property
    def start_time(self) -> datetime:
        """Get the process start time."""
        return self._start_time

    @property
    def last_successful_discovery(self) -> datetime | None:
        """Get the time of the last discovery that returned a listing."""
        with self._lock:
            return self._last_successful_discovery

    @property
    def current_cycle(self) -> int:
        with self._lock:
            return self._current_cycle

    # =========================================================================
    # Discovery
    # =========================================================================

    def begin_cycle(self, discovered: int, now: datetime | None = None) -> int:
        """Record a successful discovery and open a new cycle.

        Args:
            discovered: Number of unique addresses returned by the directory.
            now: Discovery completion time (defaults to the current UTC time).

        Returns:
            The new cycle number (1 for the first cycle).
        """
        now = now or datetime.now(UTC)
        with self._lock:
            self._current_cycle += 1
            cycle = self._current_cycle
            self._last_successful_discovery = now
            self._last_discovered_count = discovered
            self._cycles[cycle] = CycleStats(cycle=cycle, discovered=discovered, started_at=now)
            while len(self._cycles) > self._max_cycles:
                del self._cycles[min(self._cycles)]
            return cycle

    # =========================================================================
    # Probe outcomes
    # =========================================================================

    def _bump(self, cycle: int, **deltas: int) -> None:
        stats = self._cycles.get(cycle)
        if stats is None:
            return
        self._cycles[cycle] = replace(
            stats,
            hits=stats.hits + deltas.get("hits", 0),
            misses=stats.misses + deltas.get("misses", 0),
            store_errors=stats.store_errors + deltas.get("store_errors", 0),
        )

    def record_hit(self, cycle: int) -> None:
        with self._lock:
            self._total_hits += 1
            self._bump(cycle, hits=1)

    def record_miss(self, cycle: int) -> None:
        with self._lock:
            self._total_misses += 1
            self._bump(cycle, misses=1)

    def record_store_error(self, cycle: int) -> None:
        with self._lock:
            self._total_store_errors += 1
            self._bump(cycle, store_errors=1)

    def get_cycle(self, cycle: int) -> CycleStats | None:
        """Return stats for a recent cycle, or None if it was evicted or never ran."""
        with self._lock:
            return self._cycles.get(cycle)

    # =========================================================================
    # Scheduling and sweeps
    # =========================================================================

    def record_skipped_tick(self, task_name: str) -> None:
        with self._lock:
            self._skipped_ticks[task_name] += 1

    def record_sweep(self, deleted: int, now: datetime | None = None) -> None:
        with self._lock:
            self._last_sweep = now or datetime.now(UTC)
            self._last_sweep_deleted = deleted
            self._total_deleted += deleted

    def snapshot(self) -> PipelineStats:
        """Return a consistent copy of every counter."""
        with self._lock:
            return PipelineStats(
                start_time=self._start_time,
                last_successful_discovery=self._last_successful_discovery,
                last_discovered_count=self._last_discovered_count,
                current_cycle=self._current_cycle,
                total_hits=self._total_hits,
                total_misses=self._total_misses,
                total_store_errors=self._total_store_errors,
                last_sweep=self._last_sweep,
                last_sweep_deleted=self._last_sweep_deleted,
                total_deleted=self._total_deleted,
                skipped_ticks=dict(self._skipped_ticks),
                cycles=[self._cycles[c] for c in sorted(self._cycles)],
            )


__all__ = [
    "CycleStats",
    "PipelineStats",
    "StateTracker",
]
