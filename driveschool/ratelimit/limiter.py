from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from redis.exceptions import RedisError

from ..core.config import settings as app_settings
from ..core.constants import ANONYMOUS_CALLER
from ..core.exceptions import RateLimitedException
from ..monitoring.prometheus_metrics import prometheus_metrics
from .backends import InMemoryWindowStore, RedisWindowStore, WindowStore
from .config import RateLimitPolicy, get_effective_policy
from .window import Decision

logger = logging.getLogger(__name__)


def _namespaced_key(route_id: str, identity: str) -> str:
    return f"{app_settings.cache_namespace}:rl:{route_id}:{identity}"


class RateLimiter:
    """Fixed-window limiter keyed by (route_id, caller or anonymous)."""

    def __init__(
        self,
        store: Optional[WindowStore] = None,
        *,
        enabled: Optional[bool] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store: WindowStore = store or InMemoryWindowStore()
        self.enabled = app_settings.rate_limit_enabled if enabled is None else enabled
        self._clock = clock

    async def check(
        self,
        route_id: str,
        caller_id: Optional[str],
        policy: Optional[RateLimitPolicy] = None,
    ) -> Decision:
        """Count one request against the caller's window and return the decision."""
        effective = get_effective_policy(route_id, policy)
        now_s = self._clock()
        if not self.enabled:
            return Decision(
                True,
                retry_after_s=0.0,
                remaining=effective.limit,
                limit=effective.limit,
                reset_epoch_s=now_s + effective.window_s,
            )

        identity = caller_id or ANONYMOUS_CALLER
        try:
            decision = await self.store.hit(
                _namespaced_key(route_id, identity), now_s, effective.limit, effective.window_s
            )
        except (RedisError, ConnectionError, OSError) as exc:
            # Limiter store unavailable: fail open
            prometheus_metrics.record_rate_limit_error(route_id)
            logger.warning(
                "rate_limit_store_unavailable",
                extra={"route_id": route_id, "error": str(exc), "error_type": type(exc).__name__},
            )
            return Decision(
                True,
                retry_after_s=0.0,
                remaining=effective.limit,
                limit=effective.limit,
                reset_epoch_s=now_s + effective.window_s,
            )

        prometheus_metrics.record_rate_limit_decision(route_id, decision.allowed)
        return decision

    async def enforce(
        self,
        route_id: str,
        caller_id: Optional[str],
        policy: Optional[RateLimitPolicy] = None,
    ) -> Decision:
        """Like ``check`` but raises ``RateLimitedException`` when blocked."""
        decision = await self.check(route_id, caller_id, policy)
        if not decision.allowed:
            logger.info(
                "rate_limit_blocked",
                extra={
                    "route_id": route_id,
                    "caller_id": caller_id or ANONYMOUS_CALLER,
                    "retry_after_s": decision.retry_after_s,
                },
            )
            raise RateLimitedException(
                retry_after_s=decision.retry_after_s,
                limit=decision.limit,
                reset_epoch_s=decision.reset_epoch_s,
            )
        return decision


def build_rate_limiter() -> RateLimiter:
    store: WindowStore
    if app_settings.rate_limit_backend == "redis":
        store = RedisWindowStore.from_url(app_settings.redis_url)
    else:
        store = InMemoryWindowStore()
    return RateLimiter(store)


__all__ = ["RateLimiter", "build_rate_limiter"]
