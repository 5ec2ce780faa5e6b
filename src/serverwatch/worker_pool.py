"""Bounded pool of probe workers.

Each worker loops: dequeue one task, probe the address, turn the result
into a Hit or Miss outcome and hand it to the reconciler. A failed attempt
with retries left goes back to the queue with backoff; the final failed
attempt becomes a Miss. Probe failures never escape a worker, so one slow
or broken server cannot stall the other workers or the pool.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from serverwatch.exceptions import ProbeError, ReconcileStoreError
from serverwatch.gamemode import collect_tags, detect_gamemode
from serverwatch.logging import PROBE_TAG, get_logger
from serverwatch.models import (
    ProbeOutcome,
    ProbeTask,
    ServerMetadata,
    ServerSnapshot,
    split_address,
)
from serverwatch.probe import ProbeClient
from serverwatch.reconciler import StateReconciler
from serverwatch.state_tracker import StateTracker
from serverwatch.task_queue import TaskQueue

logger = get_logger(__name__)

Classifier = Callable[[str, str, frozenset[str]], str]


def build_snapshot(
    host: str,
    port: int,
    metadata: ServerMetadata,
    classifier: Classifier = detect_gamemode,
) -> ServerSnapshot:
    """Build the candidate record fields for a successful probe.

    Tags from the server keywords and the ``sv_tags`` rule are normalized to
    one lowercase token set before classification.
    """
    tags = collect_tags(metadata.raw_tags, metadata.raw_rules)
    game_port = port
    if metadata.connect_address:
        try:
            _, game_port = split_address(metadata.connect_address)
        except ValueError:
            game_port = port
    return ServerSnapshot(
        ip=host,
        port=game_port,
        query_port=metadata.query_port or port,
        name=metadata.name,
        map=metadata.map,
        gamemode=classifier(metadata.name, metadata.map, tags),
        players=max(metadata.player_count, 0),
        max_players=max(metadata.max_players, 0),
        bots=max(metadata.bot_count, 0),
        ping_ms=metadata.ping_ms,
        password=metadata.password,
        vac=metadata.secure,
        steam_id=metadata.steam_id,
        version=metadata.version,
    )


class ProbeWorkerPool:
    """Fixed set of worker threads consuming probe tasks.

    Thread Safety:
        The probe client, reconciler and tracker are shared by every worker
        and must be thread-safe.
    """

    def __init__(
        self,
        queue: TaskQueue,
        probe_client: ProbeClient,
        reconciler: StateReconciler,
        concurrency: int = 20,
        timeout_seconds: float = 5.0,
        state_tracker: StateTracker | None = None,
        classifier: Classifier = detect_gamemode,
        poll_interval: float = 0.5,
    ) -> None:
        """Initialize the worker pool.

        Args:
            queue: Queue the workers consume.
            probe_client: Client performing one probe per attempt.
            reconciler: Receives exactly one outcome per address per cycle.
            concurrency: Number of worker threads.
            timeout_seconds: Socket timeout handed to the probe client.
            state_tracker: Optional tracker recording hits, misses and store errors.
            classifier: Gamemode classifier applied to successful probes.
            poll_interval: Seconds a worker waits on an empty queue before
                re-checking for stop.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self.probe_client = probe_client
        self.reconciler = reconciler
        self.concurrency = concurrency
        self.timeout_seconds = timeout_seconds
        self.state_tracker = state_tracker
        self.classifier = classifier
        self.poll_interval = poll_interval

        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()

    def start(self) -> None:
        """Start the worker threads."""
        with self._lock:
            if self._threads:
                return
            self._stop_event.clear()
            for index in range(self.concurrency):
                thread = threading.Thread(
                    target=self._worker_loop, name=f"probe-worker-{index}", daemon=True
                )
                thread.start()
                self._threads.append(thread)
        logger.info("Started %s probe workers", self.concurrency)

    def is_running(self) -> bool:
        with self._lock:
            return any(thread.is_alive() for thread in self._threads)

    def stop(self, timeout: float | None = None) -> bool:
        """Ask workers to exit once their current task is done and wait for them.

        Args:
            timeout: Overall seconds to wait for every worker; None waits forever.

        Returns:
            True if every worker exited within the timeout.
        """
        self._stop_event.set()
        with self._lock:
            threads, self._threads = self._threads, []
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in threads:
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            thread.join(remaining)
        alive = [thread.name for thread in threads if thread.is_alive()]
        if alive:
            logger.warning("%s probe workers still busy at shutdown deadline", len(alive))
            return False
        return True

    def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            task = self.queue.dequeue(timeout=self.poll_interval)
            if task is None:
                if self.queue.closed:
                    break
                continue
            self.process(task)

    def process(self, task: ProbeTask) -> ProbeOutcome | None:
        """Probe one task and reconcile its outcome.

        Returns:
            The terminal outcome, or None if the task was rescheduled for
            another attempt.
        """
        log = logger.with_context(address=task.address, attempt=task.attempt, cycle=task.cycle)
        try:
            host, port = split_address(task.address)
        except ValueError as e:
            log.warning("Skipping malformed address: %s", e)
            outcome = ProbeOutcome.miss(task.address, str(e))
            self._finish(task, outcome)
            return outcome

        try:
            metadata = self.probe_client.query(host, port, self.timeout_seconds)
            outcome = ProbeOutcome.hit(
                task.address, build_snapshot(host, port, metadata, self.classifier)
            )
        except ProbeError as e:
            log.debug(
                "Probe failed: %s",
                e,
                extra={"diagnostic_tag": PROBE_TAG, "error_type": type(e).__name__},
            )
            outcome = ProbeOutcome.miss(task.address, str(e))
        except Exception as e:
            log.exception(
                "Unexpected probe error: %s",
                e,
                extra={"error_type": type(e).__name__},
            )
            outcome = ProbeOutcome.miss(task.address, str(e))

        if not outcome.is_hit and task.retry_policy.has_attempts_left(task.attempt):
            self.queue.nack(task)
            return None

        self._finish(task, outcome)
        return outcome

    def _finish(self, task: ProbeTask, outcome: ProbeOutcome) -> None:
        """Reconcile a terminal outcome, then acknowledge the task."""
        try:
            self._record(task, outcome)
            self.reconciler.reconcile(task.address, outcome)
        except ReconcileStoreError as e:
            logger.error(
                "Reconciliation failed, state unchanged this cycle: %s",
                e,
                extra={"address": task.address, "error_type": type(e).__name__},
            )
            if self.state_tracker is not None:
                self.state_tracker.record_store_error(task.cycle)
        except Exception as e:
            logger.exception(
                "Unexpected reconciliation error: %s",
                e,
                extra={"address": task.address, "error_type": type(e).__name__},
            )
            if self.state_tracker is not None:
                self.state_tracker.record_store_error(task.cycle)
        finally:
            self.queue.ack(task)

    def _record(self, task: ProbeTask, outcome: ProbeOutcome) -> None:
        if self.state_tracker is None:
            return
        if outcome.is_hit:
            self.state_tracker.record_hit(task.cycle)
        else:
            self.state_tracker.record_miss(task.cycle)


__all__ = [
    "Classifier",
    "ProbeWorkerPool",
    "build_snapshot",
]
