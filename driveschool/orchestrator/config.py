"""Per-route orchestration settings and the request envelope handlers receive."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import hashlib
import json
from typing import Any, FrozenSet, Optional

from ..core.config import settings
from ..core.constants import ANONYMOUS_CALLER
from ..core.ulid_helper import generate_ulid
from ..ratelimit.config import RateLimitPolicy


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        # Lower rank is admitted first
        return {"high": 0, "medium": 1, "low": 2}[self.value]


@dataclass(frozen=True)
class RouteConfig:
    route_id: str
    priority: Priority = Priority.MEDIUM
    max_retries: int = field(default_factory=lambda: settings.orchestrator_default_max_retries)
    require_auth: bool = True
    timeout_s: Optional[float] = field(default_factory=lambda: settings.orchestrator_timeout_s)
    rate_limit: Optional[RateLimitPolicy] = None
    rate_limited: bool = True
    dedupe: bool = True

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.timeout_s is not None and self.timeout_s <= 0:
            raise ValueError("timeout_s must be positive")


@dataclass(frozen=True)
class InboundRequest:
    method: str
    path: str
    caller_id: Optional[str] = None
    roles: FrozenSet[str] = frozenset()
    payload: Any = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.caller_id)

    @property
    def is_editor(self) -> bool:
        """Caller holds one of the configured editor roles."""
        return bool(self.caller_id) and bool(self.roles & settings.editor_roles)


def compute_dedupe_key(route_id: str, request: InboundRequest) -> str:
    """Hash of route, caller, method and canonical payload."""
    canonical = json.dumps(request.payload, sort_keys=True, separators=(",", ":"), default=str)
    material = "|".join(
        [route_id, request.caller_id or ANONYMOUS_CALLER, request.method.upper(), canonical]
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


@dataclass
class OrchestratedRequest:
    route_id: str
    priority: Priority
    max_retries: int
    dedupe_key: str
    attempt: int = 0
    request_id: str = field(default_factory=generate_ulid)

    @classmethod
    def from_inbound(cls, request: InboundRequest, config: RouteConfig) -> "OrchestratedRequest":
        return cls(
            route_id=config.route_id,
            priority=config.priority,
            max_retries=config.max_retries,
            dedupe_key=compute_dedupe_key(config.route_id, request),
        )


__all__ = [
    "InboundRequest",
    "OrchestratedRequest",
    "Priority",
    "RouteConfig",
    "compute_dedupe_key",
]
