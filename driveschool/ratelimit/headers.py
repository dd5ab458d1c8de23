from fastapi import Response

from .window import Decision


def set_rate_headers(res: Response, decision: Decision) -> None:
    res.headers["X-RateLimit-Remaining"] = str(max(decision.remaining, 0))
    res.headers["X-RateLimit-Limit"] = str(decision.limit)
    res.headers["X-RateLimit-Reset"] = str(int(decision.reset_epoch_s))
    if not decision.allowed and decision.retry_after_s > 0:
        res.headers["Retry-After"] = str(max(1, int(decision.retry_after_s + 0.999)))
