from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass
class Decision:
    allowed: bool
    retry_after_s: float
    remaining: int
    limit: int
    reset_epoch_s: float


@dataclass
class RateLimitWindow:
    count: int
    reset_epoch_s: float


def fixed_window_decide(
    now_s: float,
    window: Optional[RateLimitWindow],
    limit: int,
    window_s: int,
) -> Tuple[RateLimitWindow, Decision]:
    """
    Fixed-window counter pure decision function.

    Args:
        now_s: current wall time in seconds (epoch)
        window: stored window for the key, or None if new
        limit: requests admitted per window
        window_s: window length in seconds, starting at the first request

    Returns:
        (new_window, Decision). A blocked request leaves the count unchanged.
    """
    if window is None or now_s >= window.reset_epoch_s:
        window = RateLimitWindow(count=0, reset_epoch_s=now_s + window_s)

    if window.count >= limit:
        retry_after = max(0.0, window.reset_epoch_s - now_s)
        decision = Decision(
            False,
            retry_after_s=retry_after,
            remaining=0,
            limit=max(limit, 0),
            reset_epoch_s=window.reset_epoch_s,
        )
        return window, decision

    new_window = RateLimitWindow(count=window.count + 1, reset_epoch_s=window.reset_epoch_s)
    decision = Decision(
        True,
        retry_after_s=0.0,
        remaining=max(0, limit - new_window.count),
        limit=limit,
        reset_epoch_s=new_window.reset_epoch_s,
    )
    return new_window, decision


__all__ = ["Decision", "RateLimitWindow", "fixed_window_decide"]
