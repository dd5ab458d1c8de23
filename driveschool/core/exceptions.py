# driveschool/core/exceptions.py
"""
Domain-specific exceptions for the driving-school backend.

Every failure that can leave the request-orchestration layer is one of these.
Each carries a stable machine-readable ``kind``, the transport status it maps
to, and whether retrying the same request can succeed. Clients use the kind
to tell "try again" (transient) from "re-sync" (conflict) from "fix your
input" (validation).
"""

from enum import Enum
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class ErrorKind(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    VALIDATION = "validation_error"
    CONFLICT = "conflict"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable: bool = False
    default_message: str = "An error occurred processing your request"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message or self.default_message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def headers(self) -> Optional[Dict[str, str]]:
        return None

    def to_envelope(self) -> Dict[str, Any]:
        """Normalized error body shared by every orchestrated route."""
        envelope: Dict[str, Any] = {
            "success": False,
            "kind": self.kind.value,
            "message": self.message,
            "error": self.message,
            "retryable": self.retryable,
            "code": self.code,
        }
        if self.details:
            envelope["details"] = self.details
        return envelope

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail=self.to_envelope(),
            headers=self.headers(),
        )


class UnauthenticatedException(DomainException):
    """Raised when a route requires a caller and none was resolved."""

    kind = ErrorKind.UNAUTHENTICATED
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"

    def headers(self) -> Optional[Dict[str, str]]:
        return {"WWW-Authenticate": "Bearer"}


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    kind = ErrorKind.FORBIDDEN
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Insufficient permissions"


class RateLimitedException(DomainException):
    """Raised when a caller exceeds the route's request ceiling for the window."""

    kind = ErrorKind.RATE_LIMITED
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Rate limit exceeded"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        retry_after_s: float = 0.0,
        limit: int = 0,
        reset_epoch_s: float = 0.0,
    ) -> None:
        self.retry_after_s = max(0.0, retry_after_s)
        self.limit = limit
        self.reset_epoch_s = reset_epoch_s
        super().__init__(
            message,
            code="RATE_LIMIT_EXCEEDED",
            details={"limit": limit, "reset": int(reset_epoch_s)},
        )

    @property
    def retry_after_header(self) -> str:
        # Whole seconds, never 0 while blocked
        return str(max(1, int(self.retry_after_s + 0.999)))

    def headers(self) -> Optional[Dict[str, str]]:
        return {
            "Retry-After": self.retry_after_header,
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(int(self.reset_epoch_s)),
        }

    def to_envelope(self) -> Dict[str, Any]:
        envelope = super().to_envelope()
        envelope["retry_after"] = int(self.retry_after_header)
        return envelope


class ValidationException(DomainException):
    """Raised when business validation fails."""

    kind = ErrorKind.VALIDATION
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation failed"


class ConflictException(DomainException):
    """Raised when a write was based on a version that is no longer current."""

    kind = ErrorKind.CONFLICT
    status_code = status.HTTP_409_CONFLICT
    default_message = "Content was modified by another user"

    def to_envelope(self) -> Dict[str, Any]:
        envelope = super().to_envelope()
        envelope["conflict"] = True
        return envelope


class StorageUnavailableException(DomainException):
    """Raised when the backend store cannot be reached or times out a query."""

    kind = ErrorKind.STORAGE_UNAVAILABLE
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
    default_message = "Service temporarily unavailable. Please retry."

    def headers(self) -> Optional[Dict[str, str]]:
        return {"Retry-After": "2"}


class ServiceOverloadedException(StorageUnavailableException):
    """
    Raised when the orchestrator sheds load: its admission queue is full or
    request processing is frozen. Shares the 503 kind so clients back off the
    same way, and is never retried locally.
    """

    default_message = "Service is busy. Please retry shortly."

    def headers(self) -> Optional[Dict[str, str]]:
        return {"Retry-After": "5"}


class RequestTimeoutException(DomainException):
    """Raised when a handler exceeded its per-route timeout on every attempt."""

    kind = ErrorKind.TIMEOUT
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    retryable = True
    default_message = "The request timed out"


class UnknownException(DomainException):
    """Wraps an unexpected handler failure. Never retried."""

    kind = ErrorKind.UNKNOWN
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"


class RepositoryException(DomainException):
    """
    Exception raised for repository layer errors.

    Used when a data access operation fails for a reason that retrying will
    not fix, such as a constraint the caller did not anticipate or a broken
    query.
    """


def is_db_pool_exhaustion(exc: BaseException) -> bool:
    """
    Check if an exception indicates DB connection pool exhaustion.

    This is a common failure mode under high load when all database
    connections are in use and new requests time out waiting.
    """
    error_str = str(exc).lower()
    return "queuepool" in error_str or (
        "timeout" in error_str and ("connection" in error_str or "pool" in error_str)
    )


__all__ = [
    "ConflictException",
    "DomainException",
    "ErrorKind",
    "ForbiddenException",
    "RateLimitedException",
    "RepositoryException",
    "RequestTimeoutException",
    "ServiceOverloadedException",
    "StorageUnavailableException",
    "UnauthenticatedException",
    "UnknownException",
    "ValidationException",
    "is_db_pool_exhaustion",
]
