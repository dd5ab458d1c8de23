from __future__ import annotations

import asyncio
from functools import partial
import logging
from typing import Any, Awaitable, Callable, Dict, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight:
    """
    Collapse concurrent calls with the same key onto one execution.

    The first caller's work runs as its own task and every caller awaits it
    through ``asyncio.shield``: a caller that goes away stops waiting, but
    the work keeps running for the others. All callers see the same result
    or the same exception.
    """

    def __init__(self) -> None:
        self._inflight: Dict[str, "asyncio.Task[Any]"] = {}

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    async def do(self, key: str, func: Callable[[], Awaitable[T]]) -> Tuple[T, bool]:
        """Run ``func`` once per key at a time. Returns (result, shared)."""
        task = self._inflight.get(key)
        shared = task is not None
        if task is None:
            task = asyncio.ensure_future(func())
            self._inflight[key] = task
            task.add_done_callback(partial(self._forget, key))
        else:
            logger.debug("single_flight_join", extra={"flight_key": key})
        result = await asyncio.shield(task)
        return result, shared

    def _forget(self, key: str, task: "asyncio.Task[Any]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Mark the exception retrieved even when every caller went away
            task.exception()


__all__ = ["SingleFlight"]
