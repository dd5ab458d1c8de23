"""Failure classification and backoff for orchestrated handlers."""

from __future__ import annotations

import asyncio
import random

from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError, TimeoutError as PoolTimeoutError

from ..core.exceptions import (
    DomainException,
    RequestTimeoutException,
    StorageUnavailableException,
    UnknownException,
    is_db_pool_exhaustion,
)


def classify(exc: BaseException) -> DomainException:
    """Map any handler failure onto the domain error hierarchy."""
    if isinstance(exc, DomainException):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return RequestTimeoutException()
    if isinstance(exc, (OperationalError, PoolTimeoutError)):
        return StorageUnavailableException(details={"error_type": type(exc).__name__})
    # Pool-exhaustion message check applies to database errors only
    if isinstance(exc, SQLAlchemyError) and is_db_pool_exhaustion(exc):
        return StorageUnavailableException(details={"error_type": type(exc).__name__})
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return StorageUnavailableException(details={"error_type": type(exc).__name__})
    if isinstance(exc, (RedisConnectionError, RedisTimeoutError, ConnectionError)):
        return StorageUnavailableException(details={"error_type": type(exc).__name__})
    return UnknownException(details={"error_type": type(exc).__name__})


def backoff_delay(attempt: int, base_s: float, cap_s: float, jitter_s: float = 0.05) -> float:
    """Delay before retry number ``attempt + 1``: min(base * 2**attempt, cap) + jitter."""
    delay = min(base_s * (2**attempt), cap_s)
    if delay <= 0:
        return 0.0
    return delay + random.uniform(0, jitter_s)


__all__ = ["backoff_delay", "classify"]
