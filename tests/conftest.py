# tests/conftest.py
"""
Pytest configuration.

Settings are read at import time, so the environment is pinned to an
in-memory SQLite database and process-local cache/limiter BEFORE any
driveschool import.
"""

from __future__ import annotations

import os

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["JWT_SECRET"] = "test-secret-test-secret-test-secret-0001"
os.environ.pop("RATE_LIMIT_POLICY_OVERRIDES_JSON", None)

from typing import Callable, Dict, Iterator, Optional

from fastapi.testclient import TestClient
import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from driveschool.auth import create_access_token
from driveschool.cache.backends import InMemoryCacheBackend
from driveschool.cache.layer import CacheLayer
from driveschool.database import build_engine, build_session_factory, init_db
from driveschool.dependencies import ServiceContainer, build_container
from driveschool.main import create_app
from driveschool.orchestrator import RequestOrchestrator
from driveschool.ratelimit.backends import InMemoryWindowStore
from driveschool.ratelimit.limiter import RateLimiter
from driveschool.services.content_backend import InMemoryContentBackend
from driveschool.services.content_store import VersionedContentStore


class FakeClock:
    """Manually advanced clock for TTL and window tests."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine() -> Iterator[Engine]:
    test_engine = build_engine("sqlite://")
    init_db(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def cache_backend() -> InMemoryCacheBackend:
    return InMemoryCacheBackend()


@pytest.fixture
def cache(cache_backend: InMemoryCacheBackend) -> CacheLayer:
    return CacheLayer(cache_backend)


@pytest.fixture
def content_backend() -> InMemoryContentBackend:
    return InMemoryContentBackend()


@pytest.fixture
def content_store(content_backend: InMemoryContentBackend, cache: CacheLayer) -> VersionedContentStore:
    return VersionedContentStore(content_backend, cache)


@pytest.fixture
def rate_limiter() -> RateLimiter:
    return RateLimiter(InMemoryWindowStore(), enabled=True)


@pytest.fixture
def orchestrator(rate_limiter: RateLimiter) -> RequestOrchestrator:
    # No backoff sleeps in tests
    return RequestOrchestrator(rate_limiter, max_concurrency=4, backoff_base_s=0.0, jitter_s=0.0)


@pytest.fixture
def container(
    engine: Engine,
    session_factory: sessionmaker[Session],
    cache: CacheLayer,
    rate_limiter: RateLimiter,
    orchestrator: RequestOrchestrator,
) -> ServiceContainer:
    return build_container(
        engine=engine,
        session_factory=session_factory,
        cache=cache,
        rate_limiter=rate_limiter,
        orchestrator=orchestrator,
    )


@pytest.fixture
def client(container: ServiceContainer) -> Iterator[TestClient]:
    app = create_app(container)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Callable[..., Dict[str, str]]:
    def _headers(sub: str = "editor-1", role: Optional[str] = "editor") -> Dict[str, str]:
        claims = {"sub": sub}
        if role:
            claims["role"] = role
        return {"Authorization": f"Bearer {create_access_token(claims)}"}

    return _headers
