"""Dispatch of discovered addresses into the probe task queue."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from serverwatch.logging import get_logger
from serverwatch.models import ProbeTask, RetryPolicy
from serverwatch.task_queue import TaskQueue

logger = get_logger(__name__)


def iter_batches(addresses: Iterable[str], batch_size: int) -> Iterator[list[str]]:
    """Yield consecutive slices of at most ``batch_size`` addresses.

    >>> [len(b) for b in iter_batches((str(i) for i in range(250)), 100)]
    [100, 100, 50]
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    batch: list[str] = []
    for address in addresses:
        batch.append(address)
        if len(batch) == batch_size:
            yield batch
            batch = []
    if batch:
        yield batch


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one dispatch call."""

    cycle: int
    batch_sizes: tuple[int, ...]

    @property
    def enqueued(self) -> int:
        return sum(self.batch_sizes)


class DispatchBatcher:
    """Slices a discovery result into batches and enqueues one task per address.

    Batches only shape progress logging; tasks are independent and their
    order across batches is not significant.
    """

    def __init__(
        self,
        queue: TaskQueue,
        batch_size: int = 100,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.queue = queue
        self.batch_size = batch_size
        self.retry_policy = retry_policy or RetryPolicy()

    def dispatch(self, addresses: Iterable[str], cycle: int = 0) -> DispatchResult:
        """Enqueue a probe task for every address.

        Blocks while a bounded queue is full.

        Args:
            addresses: Unique addresses from one discovery cycle.
            cycle: Discovery cycle number stamped on each task.

        Returns:
            DispatchResult with the size of every batch enqueued.

        Raises:
            QueueClosedError: If the queue closes mid-dispatch; batches already
                enqueued stay queued.
        """
        sizes: list[int] = []
        log = logger.with_context(cycle=cycle)
        # sorted for stable batch boundaries across runs
        for index, batch in enumerate(iter_batches(sorted(addresses), self.batch_size), 1):
            for address in batch:
                self.queue.enqueue(ProbeTask(address=address, cycle=cycle), self.retry_policy)
            sizes.append(len(batch))
            log.debug("Enqueued batch %s (%s addresses)", index, len(batch))

        result = DispatchResult(cycle=cycle, batch_sizes=tuple(sizes))
        log.info("Dispatched %s addresses in %s batches", result.enqueued, len(sizes))
        return result


__all__ = [
    "DispatchBatcher",
    "DispatchResult",
    "iter_batches",
]
