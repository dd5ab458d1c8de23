"""
Priority-ordered admission under a fixed concurrency budget.

When every slot is taken, waiters are admitted high before medium before low,
and first-come first-served within one priority. A released slot is handed
directly to the next waiter, so a newcomer can never overtake the queue.
When ``max_queue`` waiters are already parked, further arrivals are shed
immediately instead of queueing without bound.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import heapq
import itertools
import logging
from typing import AsyncIterator, List, Optional, Tuple

from ..core.exceptions import ServiceOverloadedException
from ..monitoring.prometheus_metrics import prometheus_metrics
from .config import Priority

logger = logging.getLogger(__name__)

_Waiter = Tuple[int, int, "asyncio.Future[None]"]


class PriorityAdmission:
    def __init__(self, max_concurrency: int, max_queue: Optional[int] = None) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if max_queue is not None and max_queue < 1:
            raise ValueError("max_queue must be >= 1")
        self.max_concurrency = max_concurrency
        self.max_queue = max_queue
        self._in_use = 0
        self._waiters: List[_Waiter] = []
        self._sequence = itertools.count()

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    def _publish(self) -> None:
        prometheus_metrics.set_admission_waiting(len(self._waiters))

    async def acquire(self, priority: Priority) -> None:
        if self._in_use < self.max_concurrency and not self._waiters:
            self._in_use += 1
            return

        if self.max_queue is not None and len(self._waiters) >= self.max_queue:
            logger.warning(
                "Admission queue full, shedding request",
                extra={"priority": priority.value, "waiting": len(self._waiters)},
            )
            raise ServiceOverloadedException(
                "Request queue is full", details={"max_queue": self.max_queue}
            )

        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        entry: _Waiter = (priority.rank, next(self._sequence), future)
        heapq.heappush(self._waiters, entry)
        self._publish()
        try:
            await future
        except asyncio.CancelledError:
            if future.done() and not future.cancelled():
                # Slot was handed over just before the cancellation landed
                self.release()
            elif entry in self._waiters:
                self._waiters.remove(entry)
                heapq.heapify(self._waiters)
                self._publish()
            raise

    def release(self) -> None:
        while self._waiters:
            _, _, future = heapq.heappop(self._waiters)
            self._publish()
            if future.done():
                # Cancelled waiter that has not resumed yet
                continue
            # Slot ownership moves to the waiter; in_use is unchanged
            future.set_result(None)
            return
        if self._in_use <= 0:
            logger.error("PriorityAdmission.release called without a held slot")
            return
        self._in_use -= 1

    @asynccontextmanager
    async def slot(self, priority: Priority) -> AsyncIterator[None]:
        await self.acquire(priority)
        try:
            yield
        finally:
            self.release()


__all__ = ["PriorityAdmission"]
