# driveschool/orchestrator/orchestrator.py
"""
Request orchestration for critical endpoints.

Every wrapped handler runs behind the same pipeline:

    freeze gate -> auth gate -> rate-limit gate -> single-flight
    -> attempt (priority admission + handler, bounded together by the route
    timeout) -> retry on transient failure -> normalized error

The handler is an ordinary coroutine function taking the ``InboundRequest``.
Its return value is passed back unchanged; failures always leave as a
``DomainException`` subclass so the HTTP layer can render one envelope.
Load shedding (full admission queue, frozen orchestrator) answers with a
retryable 503 and is never retried locally.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from fastapi import Response

from ..core.config import settings
from ..core.exceptions import (
    DomainException,
    ServiceOverloadedException,
    UnauthenticatedException,
    UnknownException,
)
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..ratelimit.headers import set_rate_headers
from ..ratelimit.limiter import RateLimiter
from .admission import PriorityAdmission
from .config import InboundRequest, OrchestratedRequest, RouteConfig
from .retry import backoff_delay, classify
from .single_flight import SingleFlight

logger = logging.getLogger(__name__)

T = TypeVar("T")
Handler = Callable[[InboundRequest], Awaitable[T]]


class RequestOrchestrator:
    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        *,
        max_concurrency: Optional[int] = None,
        max_queue: Optional[int] = None,
        backoff_base_s: Optional[float] = None,
        backoff_cap_s: Optional[float] = None,
        jitter_s: float = 0.05,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.rate_limiter = rate_limiter or RateLimiter()
        self.admission = PriorityAdmission(
            max_concurrency or settings.orchestrator_max_concurrency,
            max_queue or settings.orchestrator_max_queue,
        )
        self.single_flight = SingleFlight()
        self.backoff_base_s = (
            settings.orchestrator_backoff_base_s if backoff_base_s is None else backoff_base_s
        )
        self.backoff_cap_s = (
            settings.orchestrator_backoff_cap_s if backoff_cap_s is None else backoff_cap_s
        )
        self.jitter_s = jitter_s
        self._sleep = sleep
        self._metrics = self._initialize_metrics()
        self._frozen_reason: Optional[str] = None
        self._frozen = False

    @staticmethod
    def _initialize_metrics() -> Dict[str, Any]:
        return {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "deduplicated_requests": 0,
            "retries": 0,
            "total_response_ms": 0.0,
            "last_processed_at": None,
        }

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self, reason: Optional[str] = None) -> None:
        """Reject every new request until ``unfreeze``. Requests already admitted finish."""
        self._frozen = True
        self._frozen_reason = reason
        logger.warning("Request orchestrator frozen", extra={"reason": reason})

    def unfreeze(self) -> None:
        self._frozen = False
        self._frozen_reason = None
        logger.info("Request orchestrator unfrozen, resuming normal operation")

    async def execute(
        self,
        request: InboundRequest,
        handler: Handler[T],
        config: RouteConfig,
        response: Optional[Response] = None,
    ) -> T:
        """
        Run ``handler`` for ``request`` under the route's policy.

        When ``response`` is given, the rate-limit headers of an admitted
        request are set on it.

        Raises:
            UnauthenticatedException: route requires a caller and none was resolved
            ServiceOverloadedException: orchestrator frozen or admission queue full
            RateLimitedException: caller exhausted the route window
            DomainException: handler failure, after any transient retries
        """
        started = time.perf_counter()
        self._metrics["total_requests"] += 1
        outcome = "success"
        try:
            if self._frozen:
                raise ServiceOverloadedException(
                    "Request processing is temporarily frozen",
                    details={"reason": self._frozen_reason} if self._frozen_reason else None,
                )

            if config.require_auth and not request.is_authenticated:
                raise UnauthenticatedException()

            if config.rate_limited:
                decision = await self.rate_limiter.enforce(
                    config.route_id, request.caller_id, config.rate_limit
                )
                if response is not None:
                    set_rate_headers(response, decision)

            orchestrated = OrchestratedRequest.from_inbound(request, config)
            flight_key = orchestrated.dedupe_key if config.dedupe else orchestrated.request_id
            result, shared = await self.single_flight.do(
                flight_key, lambda: self._run_with_retries(orchestrated, request, handler, config)
            )
            if shared:
                self._metrics["deduplicated_requests"] += 1
                prometheus_metrics.record_dedup_hit(config.route_id)
            self._metrics["successful_requests"] += 1
            return result
        except DomainException as exc:
            outcome = exc.kind.value
            self._metrics["failed_requests"] += 1
            raise
        except asyncio.CancelledError:
            # Caller went away; shared work continues without it
            outcome = "cancelled"
            raise
        finally:
            duration = time.perf_counter() - started
            self._metrics["total_response_ms"] += duration * 1000
            self._metrics["last_processed_at"] = datetime.now(timezone.utc)
            prometheus_metrics.record_orchestrated_request(config.route_id, outcome, duration)

    async def _run_with_retries(
        self,
        orchestrated: OrchestratedRequest,
        request: InboundRequest,
        handler: Handler[T],
        config: RouteConfig,
    ) -> T:
        attempt = 0
        while True:
            orchestrated.attempt = attempt + 1
            try:
                if config.timeout_s is None:
                    return await self._attempt(request, handler, config)
                return await asyncio.wait_for(
                    self._attempt(request, handler, config), timeout=config.timeout_s
                )
            except Exception as exc:
                error = classify(exc)
                shed = isinstance(error, ServiceOverloadedException)
                if shed or not error.retryable or attempt >= orchestrated.max_retries:
                    self._log_failure(orchestrated, error, exc)
                    if error is exc:
                        raise
                    raise error from exc

                delay = backoff_delay(attempt, self.backoff_base_s, self.backoff_cap_s, self.jitter_s)
                logger.warning(
                    "Transient handler failure, retrying",
                    extra={
                        "event": "orchestrator_retry",
                        "route_id": orchestrated.route_id,
                        "request_id": orchestrated.request_id,
                        "attempt": orchestrated.attempt,
                        "kind": error.kind.value,
                        "delay": delay,
                        "error": str(exc),
                    },
                )
                self._metrics["retries"] += 1
                prometheus_metrics.record_retry(orchestrated.route_id, error.kind.value)
                await self._sleep(delay)
                attempt += 1

    async def _attempt(self, request: InboundRequest, handler: Handler[T], config: RouteConfig) -> T:
        # Time spent queued for a slot counts against the route timeout
        async with self.admission.slot(config.priority):
            return await handler(request)

    @staticmethod
    def _log_failure(
        orchestrated: OrchestratedRequest, error: DomainException, exc: BaseException
    ) -> None:
        context = {
            "route_id": orchestrated.route_id,
            "request_id": orchestrated.request_id,
            "attempt": orchestrated.attempt,
            "kind": error.kind.value,
        }
        if isinstance(error, UnknownException):
            logger.error(
                "Orchestrated handler failed unexpectedly",
                extra={**context, "error_type": type(exc).__name__},
                exc_info=exc,
            )
        elif error.retryable:
            logger.warning("Orchestrated handler exhausted retries", extra=context)
        else:
            logger.info("Orchestrated handler rejected request", extra=context)

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot of orchestrator activity since startup or the last reset."""
        total = self._metrics["total_requests"]
        last = self._metrics["last_processed_at"]
        return {
            "total_requests": total,
            "successful_requests": self._metrics["successful_requests"],
            "failed_requests": self._metrics["failed_requests"],
            "deduplicated_requests": self._metrics["deduplicated_requests"],
            "retries": self._metrics["retries"],
            "average_response_ms": round(self._metrics["total_response_ms"] / total, 2)
            if total
            else 0.0,
            "queue_length": self.admission.waiting,
            "active_slots": self.admission.in_use,
            "max_concurrency": self.admission.max_concurrency,
            "in_flight": self.single_flight.in_flight,
            "frozen": self._frozen,
            "last_processed_at": last.isoformat() if last else None,
        }

    def reset_metrics(self) -> None:
        self._metrics = self._initialize_metrics()


__all__ = ["Handler", "RequestOrchestrator"]
