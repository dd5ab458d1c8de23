from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol

from redis.asyncio import Redis as AsyncRedis

from .window import Decision, RateLimitWindow, fixed_window_decide

logger = logging.getLogger(__name__)


class WindowStore(Protocol):
    async def hit(self, key: str, now_s: float, limit: int, window_s: int) -> Decision: ...


class InMemoryWindowStore:
    """
    Per-process windows. Read and update run without an await in between.

    Elapsed windows are swept at most once per ``sweep_interval_s``, so the
    map only holds callers seen within roughly one window.
    """

    def __init__(self, sweep_interval_s: float = 60.0) -> None:
        self._windows: Dict[str, RateLimitWindow] = {}
        self._sweep_interval_s = sweep_interval_s
        self._next_sweep_s: Optional[float] = None

    def _prune(self, now_s: float) -> None:
        if self._next_sweep_s is not None and now_s < self._next_sweep_s:
            return
        self._next_sweep_s = now_s + self._sweep_interval_s
        elapsed = [key for key, window in self._windows.items() if now_s >= window.reset_epoch_s]
        for key in elapsed:
            del self._windows[key]
        if elapsed:
            logger.debug("Pruned %d elapsed rate-limit windows", len(elapsed))

    async def hit(self, key: str, now_s: float, limit: int, window_s: int) -> Decision:
        self._prune(now_s)
        window, decision = fixed_window_decide(now_s, self._windows.get(key), limit, window_s)
        self._windows[key] = window
        return decision


# Lua script implementing the fixed window atomically
# KEYS[1] = storage key
# ARGV[1] = limit
# ARGV[2] = window_ms
# Returns: {allowed, count, ttl_ms}
FIXED_WINDOW_LUA = r"""
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])

local ttl_ms = redis.call('PTTL', key)
local count = 0
if ttl_ms > 0 then
  count = tonumber(redis.call('GET', key) or '0')
else
  -- missing key, or a key that somehow lost its expiry
  redis.call('DEL', key)
end

if count >= limit then
  -- blocked requests do not extend the count
  return {0, count, ttl_ms}
end

count = redis.call('INCR', key)
if count == 1 then
  redis.call('PEXPIRE', key, window_ms)
  ttl_ms = window_ms
end
return {1, count, ttl_ms}
"""


class RedisWindowStore:
    """Windows shared by every process talking to the same Redis."""

    def __init__(self, client: AsyncRedis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisWindowStore":
        return cls(AsyncRedis.from_url(redis_url, decode_responses=True))

    async def hit(self, key: str, now_s: float, limit: int, window_s: int) -> Decision:
        window_ms = max(1, int(window_s * 1000))
        res = await self.client.eval(FIXED_WINDOW_LUA, 1, key, limit, window_ms)
        # res: [allowed, count, ttl_ms]
        allowed = bool(int(res[0]))
        count = int(res[1])
        ttl_s = max(0.0, float(res[2]) / 1000.0)
        reset_epoch_s = now_s + ttl_s
        return Decision(
            allowed,
            retry_after_s=0.0 if allowed else ttl_s,
            remaining=max(0, limit - count),
            limit=max(limit, 0),
            reset_epoch_s=reset_epoch_s,
        )

    async def close(self) -> None:
        await self.client.aclose()


__all__ = ["FIXED_WINDOW_LUA", "InMemoryWindowStore", "RedisWindowStore", "WindowStore"]
