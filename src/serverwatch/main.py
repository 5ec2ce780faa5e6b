"""The Serverwatch service.

This module contains the Serverwatch class, which owns the pipeline
components and their lifecycle:

    DiscoveryPoller --> DispatchBatcher --> TaskQueue --> ProbeWorkerPool
        --> StateReconciler --> RegistryStore <-- Reaper

The module structure follows single responsibility:
- cli.py: Command-line argument parsing
- bootstrap.py: Startup and dependency wiring
- app.py: Application runner and exit codes
- shutdown.py: Signal handling
"""

from __future__ import annotations

import threading
from dataclasses import asdict
from typing import Any

from serverwatch.config import Config
from serverwatch.directory import MasterDirectory
from serverwatch.dispatcher import DispatchBatcher
from serverwatch.exceptions import ReaperStoreError, StartupDependencyError, StoreError
from serverwatch.logging import get_logger
from serverwatch.models import RetryPolicy
from serverwatch.poller import DiscoveryPoller
from serverwatch.probe import ProbeClient
from serverwatch.reaper import Reaper
from serverwatch.reconciler import Clock, StateReconciler, utc_now
from serverwatch.scheduler import PeriodicTask
from serverwatch.shutdown import ShutdownHandler
from serverwatch.state_tracker import StateTracker
from serverwatch.store import RegistryStore
from serverwatch.task_queue import TaskQueue
from serverwatch.worker_pool import ProbeWorkerPool

logger = get_logger(__name__)


class Serverwatch:
    """Composes the discovery, probe, reconcile and reap pipeline.

    The store, directory and probe client are injected (see
    ``serverwatch.container``); everything else is built here from config.
    """

    def __init__(
        self,
        config: Config,
        store: RegistryStore,
        directory: MasterDirectory,
        probe_client: ProbeClient,
        state_tracker: StateTracker | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the service.

        Args:
            config: Application configuration.
            store: Registry store shared by the reconciler and the reaper.
            directory: Master directory queried by discovery.
            probe_client: Client used by every probe worker.
            state_tracker: Optional tracker; a fresh one is created if omitted.
            clock: Source of record timestamps.
        """
        self.config = config
        self.store = store
        self.directory = directory
        self.probe_client = probe_client
        self.state_tracker = state_tracker or StateTracker()

        self.queue = TaskQueue(capacity=config.probe.queue_capacity)
        self.reconciler = StateReconciler(
            store,
            offline_threshold=config.lifecycle.offline_threshold,
            clock=clock,
        )
        self.worker_pool = ProbeWorkerPool(
            self.queue,
            probe_client,
            self.reconciler,
            concurrency=config.probe.concurrency,
            timeout_seconds=config.probe.timeout_seconds,
            state_tracker=self.state_tracker,
        )
        self.batcher = DispatchBatcher(
            self.queue,
            batch_size=config.polling.batch_size,
            retry_policy=RetryPolicy(
                max_attempts=config.probe.max_attempts,
                initial_delay=config.probe.backoff_seconds,
            ),
        )
        self.poller = DiscoveryPoller(
            directory,
            self.batcher,
            directory_filter=config.polling.directory_filter,
            state_tracker=self.state_tracker,
        )
        self.reaper = Reaper(
            store,
            retention_days=config.lifecycle.retention_days,
            clock=clock,
            state_tracker=self.state_tracker,
        )

        self._discovery_task = PeriodicTask(
            "discovery",
            config.polling.interval_seconds,
            self.poller.poll,
            run_on_start=config.execution.run_on_start,
            on_skip=self.state_tracker.record_skipped_tick,
        )
        self._reaper_task = PeriodicTask(
            "reaper",
            config.lifecycle.reap_interval_seconds,
            self.sweep,
            run_on_start=config.execution.run_on_start,
            on_skip=self.state_tracker.record_skipped_tick,
        )

        self._shutdown_handler = ShutdownHandler()
        self._lifecycle_lock = threading.Lock()
        self._started = False
        self._stopped = False

    def verify_dependencies(self) -> None:
        """Check that the registry store is usable.

        Raises:
            StartupDependencyError: If the store cannot be opened or queried.
        """
        try:
            self.store.verify()
        except StoreError as e:
            raise StartupDependencyError("store", f"Registry store unavailable: {e}") from e

    def start(self) -> None:
        """Verify dependencies, then start the workers and both periodic tasks."""
        with self._lifecycle_lock:
            if self._started:
                return
            self.verify_dependencies()
            self.worker_pool.start()
            self._discovery_task.start()
            self._reaper_task.start()
            self._started = True
        logger.info(
            "Serverwatch started: discovery every %ss, %s probe workers, "
            "offline after %s misses, retention %s days",
            self.config.polling.interval_seconds,
            self.config.probe.concurrency,
            self.config.lifecycle.offline_threshold,
            self.config.lifecycle.retention_days,
        )

    def request_shutdown(self) -> None:
        """Ask ``run()`` to return; safe to call from any thread."""
        self._shutdown_handler.request_shutdown()

    def is_shutdown_requested(self) -> bool:
        return self._shutdown_handler.shutdown_requested

    def run(self) -> None:
        """Start the pipeline and block until shutdown is requested."""
        self._shutdown_handler.install_signal_handlers()
        try:
            self.start()
            while not self._shutdown_handler.wait(1.0):
                pass
        finally:
            self.shutdown()
            self._shutdown_handler.restore_signal_handlers()

    def run_once(self) -> bool:
        """Run one discovery cycle, wait for every probe, then sweep once.

        Returns:
            True if discovery and the sweep both succeeded.
        """
        try:
            self.verify_dependencies()
            self.worker_pool.start()
            addresses = self.poller.poll()
            if addresses is None:
                logger.error("Discovery cycle failed")
                return False
            self.queue.join()
            cycle = self.state_tracker.get_cycle(self.state_tracker.current_cycle)
            if cycle is not None:
                logger.info(
                    "Cycle %s complete: %s hits, %s misses, %s store errors",
                    cycle.cycle,
                    cycle.hits,
                    cycle.misses,
                    cycle.store_errors,
                )
            try:
                self.reaper.sweep()
            except ReaperStoreError as e:
                logger.error("%s", e, extra={"error_type": type(e).__name__})
                return False
            return True
        finally:
            self.shutdown()

    def sweep(self) -> int | None:
        """Run one retention sweep, logging instead of raising on store failure.

        Returns:
            Number of records deleted, or None if the sweep failed.
        """
        try:
            return self.reaper.sweep()
        except ReaperStoreError as e:
            logger.error(
                "%s; retrying at next scheduled sweep",
                e,
                extra={"error_type": type(e).__name__},
            )
            return None

    def shutdown(self) -> None:
        """Stop ticking, drain in-flight probes up to the deadline and close resources.

        Tasks still queued at the deadline are abandoned; discovery finds
        their addresses again after restart.
        """
        with self._lifecycle_lock:
            if self._stopped:
                return
            self._stopped = True

        timeout = self.config.execution.shutdown_timeout_seconds
        self._discovery_task.stop(timeout=1.0)
        self._reaper_task.stop(timeout=1.0)
        self.queue.close()

        in_flight = self.queue.in_flight()
        if in_flight:
            logger.info(
                "Waiting for %s in-flight probe(s) to finish (timeout: %.1fs)...",
                in_flight,
                timeout,
            )
        self.worker_pool.stop(timeout=timeout)

        abandoned = self.queue.drain_remaining()
        if abandoned:
            logger.info("Abandoned %s queued probe task(s)", len(abandoned))

        self.directory.close()
        self.store.close()
        logger.info("Serverwatch shutdown complete")

    def get_stats(self) -> dict[str, Any]:
        """Return pipeline counters plus current queue depth."""
        stats = asdict(self.state_tracker.snapshot())
        stats["queue_pending"] = self.queue.pending()
        stats["queue_in_flight"] = self.queue.in_flight()
        stats["discovery_running"] = self._discovery_task.is_running()
        stats["workers_running"] = self.worker_pool.is_running()
        return stats


__all__ = ["Serverwatch"]
