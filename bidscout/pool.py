"""Bounded worker pool that runs work in fixed batches."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

logger = logging.getLogger("bidscout.pool")

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class Outcome(Generic[T, R]):
    """Result of running one item through the pool."""

    item: T
    result: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BatchPool:
    """Run items through ``size`` workers, one batch at a time.

    Every item in a batch is in flight concurrently and the whole batch
    settles before the next one starts. A failing item is captured in its
    ``Outcome`` and never affects its siblings.
    """

    def __init__(self, size: int = 5) -> None:
        if size < 1:
            raise ValueError("pool size must be at least 1")
        self.size = size

    def batches(self, items: Sequence[T]) -> List[Sequence[T]]:
        return [items[i : i + self.size] for i in range(0, len(items), self.size)]

    async def run_batch(
        self,
        batch: Sequence[T],
        worker: Callable[[T], Awaitable[R]],
    ) -> List[Outcome]:
        queue: asyncio.Queue = asyncio.Queue()
        outcomes: List[Outcome] = [Outcome(item=item) for item in batch]
        for index in range(len(batch)):
            queue.put_nowait(index)

        async def _drain() -> None:
            while True:
                index = await queue.get()
                outcome = outcomes[index]
                try:
                    outcome.result = await worker(outcome.item)
                except Exception as exc:  # pylint: disable=broad-except
                    logger.exception("Worker failed for %r", outcome.item)
                    outcome.error = exc
                finally:
                    queue.task_done()

        workers = [asyncio.create_task(_drain()) for _ in range(min(self.size, len(batch)))]
        try:
            await queue.join()
        finally:
            for task in workers:
                task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.gather(*workers)
        return outcomes

    async def map(
        self,
        items: Sequence[T],
        worker: Callable[[T], Awaitable[Any]],
    ) -> AsyncIterator[List[Outcome]]:
        """Yield the settled outcomes of each batch in order."""
        for batch in self.batches(list(items)):
            yield await self.run_batch(batch, worker)
