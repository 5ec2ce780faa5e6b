"""In-process task queue with bounded retries and exponential backoff.

Delivery is at-least-once within the process: a dequeued task stays
in-flight until it is acknowledged (``ack``) or until a ``nack`` exhausts
its retry policy. A ``nack`` with attempts left puts the task back with its
attempt number incremented and a ``not_before`` time pushed out by the
policy's backoff.

The queue is not durable. Tasks still queued when the process stops are
returned by ``drain_remaining`` and abandoned; discovery finds their
addresses again on the next cycle.
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import replace

from serverwatch.exceptions import QueueClosedError
from serverwatch.logging import QUEUE_TAG, get_logger
from serverwatch.models import ProbeTask, RetryPolicy

logger = get_logger(__name__)


class TaskQueue:
    """Thread-safe probe task queue.

    Args:
        capacity: Maximum number of queued (not in-flight) tasks; ``enqueue``
            blocks while the queue is full. 0 means unbounded.
        clock: Monotonic clock used for backoff scheduling.
    """

    def __init__(self, capacity: int = 0, clock: Callable[[], float] = time.monotonic) -> None:
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        self.capacity = capacity
        self._clock = clock
        self._cond = threading.Condition()
        self._ready: deque[ProbeTask] = deque()
        # Heap of (not_before, sequence, task) for tasks waiting out a backoff
        self._delayed: list[tuple[float, int, ProbeTask]] = []
        self._sequence = itertools.count()
        self._in_flight: dict[int, ProbeTask] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def _queued(self) -> int:
        return len(self._ready) + len(self._delayed)

    def _push(self, task: ProbeTask) -> None:
        if task.not_before > self._clock():
            heapq.heappush(self._delayed, (task.not_before, next(self._sequence), task))
        else:
            self._ready.append(task)
        self._cond.notify_all()

    def _promote_due(self) -> float | None:
        """Move due delayed tasks to the ready queue.

        Returns:
            Seconds until the next delayed task is due, or None if none wait.
        """
        now = self._clock()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, task = heapq.heappop(self._delayed)
            self._ready.append(task)
        if self._delayed:
            return max(self._delayed[0][0] - now, 0.0)
        return None

    def enqueue(self, task: ProbeTask, retry_policy: RetryPolicy | None = None) -> ProbeTask:
        """Add a task, attaching ``retry_policy`` when given.

        Blocks while a bounded queue is full.

        Returns:
            The task as queued.

        Raises:
            QueueClosedError: If the queue was closed before or while waiting.
        """
        if retry_policy is not None:
            task = replace(task, retry_policy=retry_policy)
        with self._cond:
            while not self._closed and self.capacity and self._queued() >= self.capacity:
                self._cond.wait()
            if self._closed:
                raise QueueClosedError(f"Cannot enqueue {task.address}: queue is closed")
            self._push(task)
        return task

    def dequeue(self, timeout: float | None = None) -> ProbeTask | None:
        """Take the next due task and mark it in-flight.

        Args:
            timeout: Seconds to wait for a task; None waits indefinitely.

        Returns:
            The task, or None on timeout or once the queue is closed.
        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                if self._closed:
                    return None
                next_due = self._promote_due()
                if self._ready:
                    task = self._ready.popleft()
                    self._in_flight[task.task_id] = task
                    self._cond.notify_all()
                    return task
                wait = next_due
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def ack(self, task: ProbeTask) -> None:
        """Mark an in-flight task as done."""
        with self._cond:
            if self._in_flight.pop(task.task_id, None) is None:
                logger.warning("Ack for unknown task %s (%s)", task.task_id, task.address)
            self._cond.notify_all()

    def nack(self, task: ProbeTask) -> bool:
        """Report a failed attempt of an in-flight task.

        Returns:
            True if the task was rescheduled for another attempt, False if its
            retry policy is exhausted and the task is now finished.
        """
        policy = task.retry_policy
        with self._cond:
            self._in_flight.pop(task.task_id, None)
            if not policy.has_attempts_left(task.attempt):
                self._cond.notify_all()
                return False
            delay = policy.delay_for(task.attempt)
            retry = replace(task, attempt=task.attempt + 1, not_before=self._clock() + delay)
            self._push(retry)
        logger.debug(
            "Rescheduled %s for attempt %s in %.1fs",
            task.address,
            retry.attempt,
            delay,
            extra={"diagnostic_tag": QUEUE_TAG},
        )
        return True

    def close(self) -> None:
        """Stop accepting and delivering tasks; wakes every waiter."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def drain_remaining(self) -> list[ProbeTask]:
        """Remove and return every queued task (ready and delayed)."""
        with self._cond:
            remaining = list(self._ready) + [task for _, _, task in sorted(self._delayed)]
            self._ready.clear()
            self._delayed.clear()
            self._cond.notify_all()
            return remaining

    def pending(self) -> int:
        """Number of queued tasks, including those waiting out a backoff."""
        with self._cond:
            return self._queued()

    def in_flight(self) -> int:
        with self._cond:
            return len(self._in_flight)

    def join(self, timeout: float | None = None) -> bool:
        """Wait until no task is queued or in flight.

        Returns:
            True if the queue drained, False on timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._queued() or self._in_flight:
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True


__all__ = ["TaskQueue"]
