from dataclasses import dataclass
import json
import logging
import os
from typing import Any, Dict, Optional

from ..core.config import settings as app_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    limit: int
    window_s: int


def default_policy() -> RateLimitPolicy:
    return RateLimitPolicy(
        limit=app_settings.rate_limit_default_limit,
        window_s=app_settings.rate_limit_default_window_s,
    )


# Route policies keyed by route_id; routes not listed use the default policy
ROUTE_POLICIES: Dict[str, RateLimitPolicy] = {
    "content.read": RateLimitPolicy(limit=120, window_s=60),
    "content.history": RateLimitPolicy(limit=60, window_s=60),
    "content.save": RateLimitPolicy(limit=30, window_s=60),
    "content.restore": RateLimitPolicy(limit=10, window_s=60),
    "working_hours.read": RateLimitPolicy(limit=120, window_s=60),
    "working_hours.save": RateLimitPolicy(limit=20, window_s=60),
    "availability.read": RateLimitPolicy(limit=120, window_s=60),
}

# Route policy overrides: map of route_id prefix -> {limit, window_s}
_POLICY_OVERRIDES: Dict[str, Dict[str, Any]] = {}


def _load_overrides_from_env() -> Dict[str, Dict[str, Any]]:
    raw = os.getenv("RATE_LIMIT_POLICY_OVERRIDES_JSON", "").strip()
    if not raw:
        return {}
    try:
        obj = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring malformed RATE_LIMIT_POLICY_OVERRIDES_JSON")
        return {}
    if isinstance(obj, dict):
        return {str(k): dict(v) for k, v in obj.items() if isinstance(v, dict)}
    return {}


def reload_config() -> Dict[str, Any]:
    """Reload policy overrides from env.

    Returns merged view for debugging/introspection.
    """
    global _POLICY_OVERRIDES

    _POLICY_OVERRIDES = _load_overrides_from_env()
    return {
        "enabled": app_settings.rate_limit_enabled,
        "backend": app_settings.rate_limit_backend,
        "policy_overrides_count": len(_POLICY_OVERRIDES),
    }


def get_effective_policy(
    route_id: str, route_override: Optional[RateLimitPolicy] = None
) -> RateLimitPolicy:
    """Return the policy for a route: route config, then table, then env overrides.

    Simple prefix pattern match for overrides.
    """
    base = route_override or ROUTE_POLICIES.get(route_id) or default_policy()
    for pattern, override in _POLICY_OVERRIDES.items():
        if not route_id.startswith(pattern):
            continue
        try:
            limit = int(override.get("limit", override.get("rate", base.limit)))
            window_s = int(override.get("window_s", override.get("window", base.window_s)))
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid rate-limit override for %s", pattern)
            continue
        return RateLimitPolicy(limit=limit, window_s=window_s)
    return base


reload_config()

__all__ = [
    "ROUTE_POLICIES",
    "RateLimitPolicy",
    "default_policy",
    "get_effective_policy",
    "reload_config",
]
