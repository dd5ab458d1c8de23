"""
Process-scoped service container and the FastAPI dependencies that expose it.

Everything stateful (cache, rate-limit windows, in-flight requests, content
subscribers) is built once per app in the lifespan handler and stored on
``app.state.container``.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .auth import Caller
from .cache.layer import CacheLayer, build_cache_layer
from .database import SessionLocal, engine as default_engine
from .orchestrator import InboundRequest, RequestOrchestrator
from .ratelimit.limiter import RateLimiter, build_rate_limiter
from .services.content_backend import SqlContentBackend
from .services.content_store import VersionedContentStore
from .services.working_hours_service import WorkingHoursService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    cache: CacheLayer
    rate_limiter: RateLimiter
    orchestrator: RequestOrchestrator
    content_store: VersionedContentStore
    working_hours: WorkingHoursService
    engine: Engine
    session_factory: sessionmaker[Session]

    async def close(self) -> None:
        await self.cache.close()
        close = getattr(self.rate_limiter.store, "close", None)
        if close is not None:
            await close()


def build_container(
    *,
    engine: Optional[Engine] = None,
    session_factory: Optional[sessionmaker[Session]] = None,
    cache: Optional[CacheLayer] = None,
    rate_limiter: Optional[RateLimiter] = None,
    orchestrator: Optional[RequestOrchestrator] = None,
) -> ServiceContainer:
    """Wire the default production graph; any piece can be swapped (tests do)."""
    engine = engine or default_engine
    session_factory = session_factory or SessionLocal
    cache = cache or build_cache_layer()
    rate_limiter = rate_limiter or build_rate_limiter()
    orchestrator = orchestrator or RequestOrchestrator(rate_limiter)
    return ServiceContainer(
        cache=cache,
        rate_limiter=rate_limiter,
        orchestrator=orchestrator,
        content_store=VersionedContentStore(SqlContentBackend(session_factory), cache),
        working_hours=WorkingHoursService(session_factory, cache),
        engine=engine,
        session_factory=session_factory,
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container  # type: ignore[no-any-return]


def get_orchestrator(request: Request) -> RequestOrchestrator:
    return get_container(request).orchestrator


def get_content_store(request: Request) -> VersionedContentStore:
    return get_container(request).content_store


def get_working_hours_service(request: Request) -> WorkingHoursService:
    return get_container(request).working_hours


def inbound_request(request: Request, caller: Optional[Caller], payload: Any = None) -> InboundRequest:
    """Describe an HTTP request for the orchestrator."""
    return InboundRequest(
        method=request.method,
        path=request.url.path,
        caller_id=caller.caller_id if caller else None,
        roles=caller.roles if caller else frozenset(),
        payload=payload,
    )


__all__ = [
    "ServiceContainer",
    "build_container",
    "get_container",
    "get_content_store",
    "get_orchestrator",
    "get_working_hours_service",
    "inbound_request",
]
