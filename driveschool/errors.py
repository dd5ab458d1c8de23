"""
Exception handlers rendering the normalized error envelope.

Every failure leaves the API as::

    {"success": false, "kind": ..., "message": ..., "error": ..., "retryable": ..., "code": ...}

plus ``conflict: true`` for conflicts and ``retry_after`` for rate limits.
"""

import logging
from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.exceptions import DomainException, ErrorKind, UnknownException, ValidationException

logger = logging.getLogger(__name__)

_KIND_BY_STATUS = {
    400: ErrorKind.VALIDATION,
    401: ErrorKind.UNAUTHENTICATED,
    403: ErrorKind.FORBIDDEN,
    409: ErrorKind.CONFLICT,
    429: ErrorKind.RATE_LIMITED,
    503: ErrorKind.STORAGE_UNAVAILABLE,
    504: ErrorKind.TIMEOUT,
}


def _validation_errors(exc: RequestValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        return JSONResponse(
            jsonable_encoder(exc.to_envelope()),
            status_code=exc.status_code,
            headers=exc.headers(),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        error = ValidationException(
            "Invalid request", details={"errors": _validation_errors(exc)}
        )
        return JSONResponse(jsonable_encoder(error.to_envelope()), status_code=error.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        if isinstance(exc.detail, dict) and "kind" in exc.detail:
            body: Dict[str, Any] = dict(exc.detail)
        else:
            kind = _KIND_BY_STATUS.get(exc.status_code, ErrorKind.UNKNOWN)
            message = exc.detail if isinstance(exc.detail, str) else "Request failed"
            body = {
                "success": False,
                "kind": kind.value,
                "message": message,
                "error": message,
                "retryable": exc.status_code in (503, 504),
                "code": f"HTTP_{exc.status_code}",
            }
        return JSONResponse(
            jsonable_encoder(body),
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            extra={"path": request.url.path, "method": request.method},
            exc_info=exc,
        )
        error = UnknownException()
        return JSONResponse(error.to_envelope(), status_code=error.status_code)
