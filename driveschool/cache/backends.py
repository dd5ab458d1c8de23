# driveschool/cache/backends.py
"""
Storage backends for the cache layer.

Backends store already-serialized strings; TTL handling and serialization
belong to ``CacheLayer``. The in-memory backend serves development and
tests, the Redis backend is used when several processes share one cache.
"""

from __future__ import annotations

import fnmatch
import logging
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

from redis.asyncio import Redis as AsyncRedis

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...

    async def delete(self, key: str) -> int: ...

    async def delete_pattern(self, pattern: str) -> int: ...


class InMemoryCacheBackend:
    """
    Process-local cache with passive expiry.

    Expired entries are dropped when read, and writes sweep the whole map at
    most once per ``sweep_interval_s`` so keys that are never read again do
    not accumulate.
    """

    def __init__(
        self, clock: Callable[[], float] = time.monotonic, sweep_interval_s: float = 60.0
    ) -> None:
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}
        self._clock = clock
        self._sweep_interval_s = sweep_interval_s
        self._next_sweep: Optional[float] = None
        logger.info("InMemoryCacheBackend initialized")

    def _expired(self, expires_at: Optional[float]) -> bool:
        return expires_at is not None and self._clock() >= expires_at

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._expired(expires_at):
            self._entries.pop(key, None)
            return None
        return value

    def _prune(self) -> None:
        now = self._clock()
        if self._next_sweep is not None and now < self._next_sweep:
            return
        self._next_sweep = now + self._sweep_interval_s
        expired = [key for key, (_, expires_at) in self._entries.items() if self._expired(expires_at)]
        for key in expired:
            del self._entries[key]

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._prune()
        expires_at = self._clock() + ttl if ttl > 0 else None
        self._entries[key] = (value, expires_at)

    async def delete(self, key: str) -> int:
        return 1 if self._entries.pop(key, None) is not None else 0

    async def delete_pattern(self, pattern: str) -> int:
        matched = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
        for key in matched:
            self._entries.pop(key, None)
        return len(matched)

    def __len__(self) -> int:
        return sum(1 for _, expires_at in self._entries.values() if not self._expired(expires_at))


class RedisCacheBackend:
    """Redis/DragonflyDB-backed cache shared across processes."""

    _DELETE_BATCH = 500

    def __init__(self, client: AsyncRedis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisCacheBackend":
        client = AsyncRedis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            health_check_interval=30,
        )
        logger.info("[REDIS-CACHE] Async Redis cache client initialized")
        return cls(client)

    async def get(self, key: str) -> Optional[str]:
        value = await self.client.get(key)
        return value if value is None or isinstance(value, str) else value.decode("utf-8")

    async def set(self, key: str, value: str, ttl: int) -> None:
        if ttl > 0:
            await self.client.set(key, value, ex=ttl)
        else:
            await self.client.set(key, value)

    async def delete(self, key: str) -> int:
        return int(await self.client.delete(key))

    async def delete_pattern(self, pattern: str) -> int:
        """Delete pattern from Redis using SCAN."""
        deleted = 0
        batch: list[str] = []
        async for key in self.client.scan_iter(match=pattern):
            batch.append(key)
            if len(batch) >= self._DELETE_BATCH:
                deleted += int(await self.client.delete(*batch))
                batch.clear()
        if batch:
            deleted += int(await self.client.delete(*batch))
        return deleted

    async def close(self) -> None:
        await self.client.aclose()
        logger.info("[REDIS-CACHE] Async Redis cache client closed")


__all__ = ["CacheBackend", "InMemoryCacheBackend", "RedisCacheBackend"]
