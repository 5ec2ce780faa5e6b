"""Tests for the in-process probe task queue."""

from __future__ import annotations

import threading

import pytest

from serverwatch.exceptions import QueueClosedError
from serverwatch.models import ProbeTask, RetryPolicy
from serverwatch.task_queue import TaskQueue


class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_task(address: str = "203.0.113.7:27015", **kwargs: object) -> ProbeTask:
    kwargs.setdefault("not_before", 0.0)
    return ProbeTask(address, **kwargs)  # type: ignore[arg-type]


class TestEnqueueDequeue:
    def test_fifo_order(self) -> None:
        queue = TaskQueue()
        for i in range(3):
            queue.enqueue(make_task(f"203.0.113.{i + 1}:27015"))

        addresses = [queue.dequeue(timeout=0).address for _ in range(3)]  # type: ignore[union-attr]

        assert addresses == ["203.0.113.1:27015", "203.0.113.2:27015", "203.0.113.3:27015"]
        assert queue.in_flight() == 3
        assert queue.pending() == 0

    def test_dequeue_times_out_when_empty(self) -> None:
        assert TaskQueue().dequeue(timeout=0.05) is None

    def test_dequeue_wakes_on_enqueue(self) -> None:
        queue = TaskQueue()
        received: list[ProbeTask | None] = []
        consumer = threading.Thread(target=lambda: received.append(queue.dequeue(timeout=5)))
        consumer.start()

        queue.enqueue(make_task())
        consumer.join(timeout=5)

        assert received and received[0] is not None
        assert received[0].address == "203.0.113.7:27015"

    def test_retry_policy_attached_at_enqueue(self) -> None:
        queue = TaskQueue()
        policy = RetryPolicy(max_attempts=5, initial_delay=0.25)

        queued = queue.enqueue(make_task(), retry_policy=policy)

        assert queued.retry_policy == policy
        assert queue.dequeue(timeout=0).retry_policy == policy  # type: ignore[union-attr]

    def test_negative_capacity_rejected(self) -> None:
        with pytest.raises(ValueError):
            TaskQueue(capacity=-1)


class TestRetries:
    """Tests for nack handling and backoff scheduling."""

    def test_nack_reschedules_after_backoff(self) -> None:
        clock = ManualClock()
        queue = TaskQueue(clock=clock)
        queue.enqueue(make_task(), retry_policy=RetryPolicy(max_attempts=2, initial_delay=1.0))
        task = queue.dequeue(timeout=0)
        assert task is not None

        assert queue.nack(task) is True
        assert queue.pending() == 1
        assert queue.in_flight() == 0
        assert queue.dequeue(timeout=0) is None

        clock.now += 1.0
        retry = queue.dequeue(timeout=0)

        assert retry is not None
        assert retry.attempt == 2
        assert retry.address == task.address
        assert retry.not_before == pytest.approx(101.0)

    def test_backoff_doubles(self) -> None:
        clock = ManualClock()
        queue = TaskQueue(clock=clock)
        queue.enqueue(make_task(), retry_policy=RetryPolicy(max_attempts=3, initial_delay=0.5))

        first = queue.dequeue(timeout=0)
        assert first is not None
        queue.nack(first)
        clock.now += 0.5
        second = queue.dequeue(timeout=0)
        assert second is not None
        queue.nack(second)

        clock.now += 0.5
        assert queue.dequeue(timeout=0) is None
        clock.now += 0.5
        third = queue.dequeue(timeout=0)
        assert third is not None
        assert third.attempt == 3

    def test_nack_exhausted_finishes_task(self) -> None:
        queue = TaskQueue()
        queue.enqueue(make_task(attempt=2), retry_policy=RetryPolicy(max_attempts=2))
        task = queue.dequeue(timeout=0)
        assert task is not None

        assert queue.nack(task) is False
        assert queue.pending() == 0
        assert queue.in_flight() == 0
        assert queue.join(timeout=0.1) is True

    def test_ack_unknown_task_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        queue = TaskQueue()
        with caplog.at_level("WARNING", logger="serverwatch.task_queue"):
            queue.ack(make_task())
        assert "Ack for unknown task" in caplog.text


class TestCapacity:
    def test_enqueue_blocks_while_full(self) -> None:
        queue = TaskQueue(capacity=1)
        queue.enqueue(make_task("203.0.113.1:27015"))
        done = threading.Event()

        def producer() -> None:
            queue.enqueue(make_task("203.0.113.2:27015"))
            done.set()

        thread = threading.Thread(target=producer)
        thread.start()
        assert not done.wait(0.1)

        queue.dequeue(timeout=0)
        assert done.wait(5)
        thread.join(timeout=5)
        assert queue.pending() == 1

    def test_close_releases_blocked_producer(self) -> None:
        queue = TaskQueue(capacity=1)
        queue.enqueue(make_task("203.0.113.1:27015"))
        errors: list[Exception] = []

        def producer() -> None:
            try:
                queue.enqueue(make_task("203.0.113.2:27015"))
            except QueueClosedError as e:
                errors.append(e)

        thread = threading.Thread(target=producer)
        thread.start()
        queue.close()
        thread.join(timeout=5)

        assert len(errors) == 1


class TestShutdown:
    def test_enqueue_after_close_raises(self) -> None:
        queue = TaskQueue()
        queue.close()
        assert queue.closed
        with pytest.raises(QueueClosedError):
            queue.enqueue(make_task())

    def test_dequeue_after_close_returns_none(self) -> None:
        queue = TaskQueue()
        queue.enqueue(make_task())
        queue.close()
        assert queue.dequeue(timeout=1) is None

    def test_close_wakes_waiting_consumer(self) -> None:
        queue = TaskQueue()
        received: list[ProbeTask | None] = [make_task()]
        consumer = threading.Thread(target=lambda: received.__setitem__(0, queue.dequeue()))
        consumer.start()

        queue.close()
        consumer.join(timeout=5)

        assert not consumer.is_alive()
        assert received[0] is None

    def test_drain_remaining_includes_delayed(self) -> None:
        clock = ManualClock()
        queue = TaskQueue(clock=clock)
        queue.enqueue(make_task("203.0.113.1:27015"), retry_policy=RetryPolicy(initial_delay=30))
        queue.enqueue(make_task("203.0.113.2:27015"))
        first = queue.dequeue(timeout=0)
        assert first is not None
        queue.nack(first)

        remaining = queue.drain_remaining()

        assert [task.address for task in remaining] == ["203.0.113.2:27015", "203.0.113.1:27015"]
        assert queue.pending() == 0

    def test_join_waits_for_in_flight(self) -> None:
        queue = TaskQueue()
        queue.enqueue(make_task())
        task = queue.dequeue(timeout=0)
        assert task is not None

        assert queue.join(timeout=0.05) is False
        queue.ack(task)
        assert queue.join(timeout=0.05) is True
