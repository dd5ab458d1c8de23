"""Fixed-window rate limiting with in-memory and Redis backends."""

from .config import RateLimitPolicy, get_effective_policy
from .limiter import RateLimiter, build_rate_limiter
from .window import Decision, RateLimitWindow, fixed_window_decide

__all__ = [
    "Decision",
    "RateLimitPolicy",
    "RateLimitWindow",
    "RateLimiter",
    "build_rate_limiter",
    "fixed_window_decide",
    "get_effective_policy",
]
