# driveschool/cache/layer.py
"""
TTL-bounded cache shared by the content store and scheduling lookups.

The cache is an optimization, never a source of truth: backend failures are
logged and counted, reads degrade to misses, and a circuit breaker stops
hammering a cache server that keeps failing. Callers that need freshness
after a write must invalidate after the backend write commits.
"""

from __future__ import annotations

import asyncio
from enum import Enum
import fnmatch
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple, Type, TypeVar

from redis.exceptions import RedisError

from ..core.config import settings
from ..monitoring.prometheus_metrics import prometheus_metrics
from .backends import CacheBackend, InMemoryCacheBackend, RedisCacheBackend
from .keys import CacheKeys

logger = logging.getLogger(__name__)

T = TypeVar("T")

CACHE_BACKEND_ERRORS: Tuple[Type[BaseException], ...] = (
    RedisError,
    ConnectionError,
    OSError,
    asyncio.TimeoutError,
)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreaker:
    """
    Circuit breaker for cache resilience.

    Prevents cascading failures when the cache server is unavailable.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._state = CircuitState.CLOSED

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def allow_request(self) -> bool:
        return self.state != CircuitState.OPEN

    def record_success(self) -> None:
        self._failure_count = 0
        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.CLOSED
            logger.info("Circuit breaker recovered, closing circuit")

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            logger.warning(f"Circuit breaker opened after {self._failure_count} failures")


class CacheLayer:
    """
    Async cache facade with JSON serialization and TTL tiers.

    Values are JSON round-tripped even for the in-memory backend, so callers
    can never mutate a cached object in place.

    A delete that fails or is skipped by the open circuit leaves its key (or
    pattern) pending. Pending keys read as misses and are never written, and
    every later read retries the pending deletes first, so a committed write
    cannot be shadowed by an entry the cache failed to drop.
    """

    def __init__(
        self,
        backend: CacheBackend,
        *,
        keys: Optional[CacheKeys] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self.backend = backend
        self.keys = keys or CacheKeys()
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.cache_circuit_failure_threshold,
            recovery_timeout=settings.cache_circuit_recovery_s,
        )
        self._stats: Dict[str, int] = self._initialize_stats()
        self._pending_keys: Set[str] = set()
        self._pending_patterns: Set[str] = set()

    @staticmethod
    def _initialize_stats() -> Dict[str, int]:
        return {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "deletes": 0,
            "errors": 0,
            "skipped": 0,
            "invalidation_failures": 0,
        }

    async def _attempt(
        self, operation: str, key: str, call: Callable[[], Awaitable[T]]
    ) -> Tuple[bool, Optional[T]]:
        """Run one backend call through the circuit breaker; ``(False, None)`` if it did not complete."""
        if not self.circuit_breaker.allow_request():
            self._stats["skipped"] += 1
            prometheus_metrics.record_cache_operation(operation, "skipped")
            return False, None
        try:
            result = await call()
        except CACHE_BACKEND_ERRORS as exc:
            self.circuit_breaker.record_failure()
            self._stats["errors"] += 1
            prometheus_metrics.record_cache_operation(operation, "error")
            logger.warning(
                "cache_backend_error",
                extra={
                    "operation": operation,
                    "cache_key": key,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return False, None
        self.circuit_breaker.record_success()
        return True, result

    async def _guarded(
        self, operation: str, key: str, call: Callable[[], Awaitable[T]], fallback: T
    ) -> T:
        completed, result = await self._attempt(operation, key, call)
        return result if completed else fallback  # type: ignore[return-value]

    def is_pending(self, key: str) -> bool:
        """True while an invalidation covering ``key`` has not reached the backend."""
        if key in self._pending_keys:
            return True
        return any(fnmatch.fnmatchcase(key, pattern) for pattern in self._pending_patterns)

    @property
    def pending_invalidations(self) -> int:
        return len(self._pending_keys) + len(self._pending_patterns)

    def _mark_pending(self, operation: str, target: str, pending: Set[str]) -> None:
        pending.add(target)
        self._stats["invalidation_failures"] += 1
        prometheus_metrics.record_cache_operation(operation, "pending")
        logger.warning(
            "cache_invalidation_pending",
            extra={"operation": operation, "cache_key": target},
        )

    async def flush_pending(self) -> bool:
        """Retry outstanding invalidations; stops at the first one that still fails."""
        for key in sorted(self._pending_keys):
            completed, _ = await self._attempt(
                "delete", key, lambda: self.backend.delete(key)
            )
            if not completed:
                return False
            self._pending_keys.discard(key)
        for pattern in sorted(self._pending_patterns):
            completed, _ = await self._attempt(
                "delete_pattern",
                pattern,
                lambda: self.backend.delete_pattern(pattern),
            )
            if not completed:
                return False
            self._pending_patterns.discard(pattern)
        logger.info("Pending cache invalidations flushed")
        return True

    async def _settle(self, key: str) -> bool:
        """Flush pending invalidations if any; True when ``key`` is safe to touch."""
        if self._pending_keys or self._pending_patterns:
            await self.flush_pending()
        return not self.is_pending(key)

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on miss, expiry, cache failure or pending invalidation."""
        if not await self._settle(key):
            self._stats["misses"] += 1
            prometheus_metrics.record_cache_operation("get", "miss")
            return None
        raw = await self._guarded("get", key, lambda: self.backend.get(key), None)
        if raw is None:
            self._stats["misses"] += 1
            prometheus_metrics.record_cache_operation("get", "miss")
            return None
        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Dropping undecodable cache entry %s", key)
            await self.delete(key)
            self._stats["misses"] += 1
            return None
        self._stats["hits"] += 1
        prometheus_metrics.record_cache_operation("get", "hit")
        return value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        tier: str = "medium",
    ) -> bool:
        """Store ``value`` under ``key``, overwriting unconditionally."""
        if not await self._settle(key):
            return False
        if ttl is None:
            ttl = settings.ttl_for(tier)
        serialized = json.dumps(value, default=str)

        async def _set() -> bool:
            await self.backend.set(key, serialized, ttl)
            return True

        stored = await self._guarded("set", key, _set, False)
        if stored:
            self._stats["sets"] += 1
            prometheus_metrics.record_cache_operation("set", "ok")
        return stored

    async def delete(self, key: str) -> bool:
        """
        Invalidate ``key``.

        Returns whether an entry was removed. A delete the backend did not
        complete is not a miss: the key stays pending (see ``is_pending``).
        """
        completed, deleted = await self._attempt(
            "delete", key, lambda: self.backend.delete(key)
        )
        if not completed:
            self._mark_pending("delete", key, self._pending_keys)
            return False
        self._pending_keys.discard(key)
        if deleted:
            self._stats["deletes"] += deleted
            prometheus_metrics.record_cache_operation("delete", "ok")
        return bool(deleted)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob-style pattern."""
        completed, deleted = await self._attempt(
            "delete_pattern", pattern, lambda: self.backend.delete_pattern(pattern)
        )
        if not completed:
            self._mark_pending("delete_pattern", pattern, self._pending_patterns)
            return 0
        self._pending_patterns.discard(pattern)
        self._pending_keys = {
            key for key in self._pending_keys if not fnmatch.fnmatchcase(key, pattern)
        }
        deleted = deleted or 0
        self._stats["deletes"] += deleted
        if deleted:
            logger.info(f"Deleted {deleted} keys matching pattern: {pattern}")
        return deleted

    async def get_or_set(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: Optional[int] = None,
        tier: str = "medium",
    ) -> T:
        """Read-through helper: fetch and cache on miss. ``None`` results are not cached."""
        cached = await self.get(key)
        if cached is not None:
            return cached  # type: ignore[no-any-return]
        value = await fetcher()
        if value is not None:
            await self.set(key, value, ttl=ttl, tier=tier)
        return value

    def get_stats(self) -> Dict[str, Any]:
        total_requests = self._stats["hits"] + self._stats["misses"]
        hit_rate = (self._stats["hits"] / total_requests * 100) if total_requests > 0 else 0
        return {
            **self._stats,
            "hit_rate": f"{hit_rate:.2f}%",
            "total_requests": total_requests,
            "pending_invalidations": self.pending_invalidations,
            "circuit_breaker": {
                "state": self.circuit_breaker.state.value,
                "failure_count": self.circuit_breaker.failure_count,
                "threshold": self.circuit_breaker.failure_threshold,
            },
        }

    def reset_stats(self) -> None:
        self._stats = self._initialize_stats()

    async def close(self) -> None:
        close = getattr(self.backend, "close", None)
        if close is not None:
            await close()


def build_cache_layer() -> CacheLayer:
    """Create the process-wide cache from settings."""
    backend: CacheBackend
    if settings.cache_backend == "redis":
        backend = RedisCacheBackend.from_url(settings.redis_url)
    else:
        backend = InMemoryCacheBackend()
    return CacheLayer(backend)


__all__ = ["CacheLayer", "CircuitBreaker", "CircuitState", "build_cache_layer"]
