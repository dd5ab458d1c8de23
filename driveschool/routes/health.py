# driveschool/routes/health.py
"""
Health check and metrics endpoints for monitoring and load balancers.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response

from ..core.config import settings
from ..core.constants import API_VERSION, BRAND_NAME
from ..database import check_db
from ..dependencies import ServiceContainer, get_container
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(
    response: Response, container: ServiceContainer = Depends(get_container)
) -> Dict[str, Any]:
    """
    Health check endpoint.

    Reports database reachability, cache statistics and an orchestrator
    snapshot (queue length, in-flight executions, average response time).
    A failing database turns the status to "degraded" with a 503.
    """
    database_ok = await asyncio.to_thread(check_db, container.engine)
    if not database_ok:
        response.status_code = 503
    return {
        "status": "healthy" if database_ok else "degraded",
        "service": f"{BRAND_NAME.lower()}-api",
        "version": API_VERSION,
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "database": "ok" if database_ok else "unavailable",
        "cache": container.cache.get_stats(),
        "orchestrator": container.orchestrator.get_metrics(),
    }


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus exposition of the service registry."""
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type(),
    )
