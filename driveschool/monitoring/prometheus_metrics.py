"""
Prometheus metrics module for the driving-school backend.

All collectors live on a dedicated registry so tests and multiple app
instances in one process never collide with the global default registry.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

orchestrated_requests_total = Counter(
    "driveschool_orchestrated_requests_total",
    "Orchestrated requests by route and outcome kind",
    ["route", "outcome"],
    registry=REGISTRY,
)

orchestrated_request_duration_seconds = Histogram(
    "driveschool_orchestrated_request_duration_seconds",
    "End-to-end orchestrated request duration in seconds (including retries)",
    ["route"],
    registry=REGISTRY,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

orchestrator_retries_total = Counter(
    "driveschool_orchestrator_retries_total",
    "Handler retries after a transient failure",
    ["route", "kind"],
    registry=REGISTRY,
)

orchestrator_dedup_hits_total = Counter(
    "driveschool_orchestrator_dedup_hits_total",
    "Requests coalesced onto an identical in-flight execution",
    ["route"],
    registry=REGISTRY,
)

orchestrator_admission_waiting = Gauge(
    "driveschool_orchestrator_admission_waiting",
    "Handler attempts waiting for a concurrency slot",
    [],
    registry=REGISTRY,
)

rate_limit_decisions_total = Counter(
    "driveschool_rl_decisions_total",
    "rate-limit decisions",
    ["route", "action"],
    registry=REGISTRY,
)

rate_limit_eval_errors_total = Counter(
    "driveschool_rl_eval_errors_total",
    "errors during rate-limit evaluation (e.g., Redis failures)",
    ["route"],
    registry=REGISTRY,
)

cache_operations_total = Counter(
    "driveschool_cache_operations_total",
    "Cache operations by result",
    ["operation", "result"],
    registry=REGISTRY,
)

content_saves_total = Counter(
    "driveschool_content_saves_total",
    "Content save attempts by outcome",
    ["outcome"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin recording facade so call sites stay one line and never raise."""

    @staticmethod
    def record_orchestrated_request(route: str, outcome: str, duration: float) -> None:
        orchestrated_requests_total.labels(route=route, outcome=outcome).inc()
        orchestrated_request_duration_seconds.labels(route=route).observe(max(duration, 0.0))

    @staticmethod
    def record_retry(route: str, kind: str) -> None:
        orchestrator_retries_total.labels(route=route, kind=kind).inc()

    @staticmethod
    def record_dedup_hit(route: str) -> None:
        orchestrator_dedup_hits_total.labels(route=route).inc()

    @staticmethod
    def set_admission_waiting(count: int) -> None:
        orchestrator_admission_waiting.set(count)

    @staticmethod
    def record_rate_limit_decision(route: str, allowed: bool) -> None:
        rate_limit_decisions_total.labels(route=route, action="allow" if allowed else "block").inc()

    @staticmethod
    def record_rate_limit_error(route: str) -> None:
        rate_limit_eval_errors_total.labels(route=route).inc()

    @staticmethod
    def record_cache_operation(operation: str, result: str) -> None:
        cache_operations_total.labels(operation=operation, result=result).inc()

    @staticmethod
    def record_content_save(outcome: str) -> None:
        content_saves_total.labels(outcome=outcome).inc()

    @staticmethod
    def get_metrics(registry: Optional[CollectorRegistry] = None) -> bytes:
        """Generate Prometheus metrics in exposition format."""
        return cast(bytes, generate_latest(registry or REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)


# Singleton instance
prometheus_metrics = PrometheusMetrics()
