"""
Caller resolution.

Sessions are issued by the hosted identity provider as HS256 JWTs. This
module only verifies them: ``sub`` is the caller id and the ``role`` claim
(or a ``roles`` list) decides who may edit content. A missing, expired or
tampered token resolves to an anonymous caller; routes decide whether that
is acceptable.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, FrozenSet, Optional, cast

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from jwt import PyJWTError

from .core.config import settings

logger = logging.getLogger(__name__)

bearer_scheme_optional = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Caller:
    caller_id: str
    roles: FrozenSet[str] = frozenset()


def _secret_value() -> str:
    return settings.jwt_secret.get_secret_value()


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Used by local tooling and tests; production tokens come from the
    identity provider with the same shape.
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return cast(str, jwt.encode(to_encode, _secret_value(), algorithm=settings.jwt_algorithm))


def decode_access_token(token: str) -> Dict[str, Any]:
    payload_raw = jwt.decode(
        token,
        _secret_value(),
        algorithms=[settings.jwt_algorithm],
        options={"verify_aud": False, "require": ["exp", "sub"]},
    )
    return cast(Dict[str, Any], payload_raw)


def _roles_from_claims(payload: Dict[str, Any]) -> FrozenSet[str]:
    roles = set()
    role = payload.get("role")
    if isinstance(role, str) and role.strip():
        roles.add(role.strip().lower())
    many = payload.get("roles")
    if isinstance(many, list):
        roles.update(str(r).strip().lower() for r in many if str(r).strip())
    return frozenset(roles)


def resolve_caller(token: Optional[str]) -> Optional[Caller]:
    if not token:
        return None
    try:
        payload = decode_access_token(token)
    except PyJWTError as exc:
        logger.info(f"Rejected bearer token: {type(exc).__name__}")
        return None
    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub.strip():
        return None
    return Caller(caller_id=sub.strip(), roles=_roles_from_claims(payload))


async def get_optional_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme_optional),
) -> Optional[Caller]:
    """FastAPI dependency; never raises. The orchestrator enforces auth per route."""
    if credentials is None:
        return None
    return resolve_caller(credentials.credentials)


__all__ = [
    "Caller",
    "create_access_token",
    "decode_access_token",
    "get_optional_caller",
    "resolve_caller",
]
