"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..core.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def _build_engine_kwargs(db_url: str) -> dict[str, Any]:
    """Engine options per backend."""
    kwargs: dict[str, Any] = {"echo": settings.database_echo, "future": True}
    if db_url.startswith("sqlite"):
        # Sessions run on worker threads via asyncio.to_thread
        kwargs["connect_args"] = {"check_same_thread": False}
        if db_url in {"sqlite://", "sqlite:///:memory:"}:
            kwargs["poolclass"] = StaticPool
    else:
        kwargs.update(pool_size=5, max_overflow=5, pool_timeout=2, pool_pre_ping=True)
    return kwargs


def build_engine(db_url: str) -> Engine:
    engine = create_engine(db_url, **_build_engine_kwargs(db_url))

    @event.listens_for(engine, "connect")
    def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
        logger.debug("Database connection established")

    return engine


def build_session_factory(bind: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind, expire_on_commit=False)


engine: Engine = build_engine(settings.database_url)
SessionLocal = build_session_factory(engine)


def init_db(bind: Engine | None = None) -> None:
    """Create the tables this service owns."""
    # Import models so they register on Base.metadata
    from .. import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def check_db(bind: Engine | None = None) -> bool:
    """Round-trip a trivial query; used by the health endpoint."""
    try:
        with (bind or engine).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        logger.warning("Database health check failed: %s", exc)
        return False


__all__ = [
    "Base",
    "SessionLocal",
    "build_engine",
    "build_session_factory",
    "check_db",
    "engine",
    "init_db",
]
