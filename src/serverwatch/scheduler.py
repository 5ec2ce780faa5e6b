"""Single-flight periodic tasks.

A ``PeriodicTask`` owns a tick thread and a one-thread executor. Every tick
submits the job to the executor unless the previous run is still in
flight, in which case the tick is skipped (never queued). The tick thread
only submits work, so a slow job cannot delay the ticks themselves.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

from serverwatch.logging import get_logger

logger = get_logger(__name__)


class PeriodicTask:
    """Runs a job on a fixed interval with at most one execution at a time.

    Thread Safety:
        ``trigger``, ``stop`` and the counters may be used from any thread.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        job: Callable[[], Any],
        run_on_start: bool = True,
        on_skip: Callable[[str], None] | None = None,
    ) -> None:
        """Initialize the periodic task.

        Args:
            name: Task name used in thread names and log messages.
            interval_seconds: Seconds between ticks.
            job: Callable run on each tick. Exceptions are logged, never raised.
            run_on_start: Fire the first run immediately on ``start()``.
            on_skip: Optional callback invoked with ``name`` when a tick is skipped.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self._job = job
        self._run_on_start = run_on_start
        self._on_skip = on_skip

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._executor: ThreadPoolExecutor | None = None
        self._thread: threading.Thread | None = None
        self._current: Future[Any] | None = None
        self._run_count = 0
        self._skipped_count = 0

    @property
    def run_count(self) -> int:
        """Number of runs submitted so far."""
        with self._lock:
            return self._run_count

    @property
    def skipped_count(self) -> int:
        """Number of ticks skipped because a run was still in flight."""
        with self._lock:
            return self._skipped_count

    def is_running(self) -> bool:
        """Check if a run is currently in flight."""
        with self._lock:
            return self._current is not None and not self._current.done()

    def start(self) -> None:
        """Start ticking."""
        with self._lock:
            if self._thread is not None:
                return
            self._stop_event.clear()
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix=f"{self.name}-job"
            )
            self._thread = threading.Thread(
                target=self._tick_loop, name=f"{self.name}-ticker", daemon=True
            )
            self._thread.start()
        logger.debug("Periodic task '%s' started (every %ss)", self.name, self.interval_seconds)

    def _tick_loop(self) -> None:
        if self._run_on_start:
            self.trigger()
        while not self._stop_event.wait(self.interval_seconds):
            self.trigger()

    def trigger(self) -> bool:
        """Submit one run unless a previous run is still in flight.

        Returns:
            True if a run was submitted, False if the tick was skipped.
        """
        with self._lock:
            if self._stop_event.is_set() or self._executor is None:
                return False
            if self._current is not None and not self._current.done():
                self._skipped_count += 1
                skipped = True
            else:
                self._current = self._executor.submit(self._run_job)
                self._run_count += 1
                skipped = False
        if skipped:
            logger.info("Skipping '%s' tick: previous run still in progress", self.name)
            if self._on_skip is not None:
                self._on_skip(self.name)
        return not skipped

    def _run_job(self) -> None:
        try:
            self._job()
        except Exception as e:
            logger.exception(
                "Periodic task '%s' failed: %s",
                self.name,
                e,
                extra={"error_type": type(e).__name__},
            )

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait for the in-flight run, if any, to finish.

        Returns:
            True if no run is in flight on return.
        """
        with self._lock:
            current = self._current
        if current is None:
            return True
        done, _ = wait([current], timeout=timeout)
        return bool(done)

    def stop(self, timeout: float | None = None) -> None:
        """Stop ticking immediately; a run already in flight is not interrupted.

        Args:
            timeout: Seconds to wait for the tick thread to exit.
        """
        self._stop_event.set()
        with self._lock:
            thread, self._thread = self._thread, None
            executor, self._executor = self._executor, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
        logger.debug("Periodic task '%s' stopped", self.name)


__all__ = ["PeriodicTask"]
