"""Request orchestration: auth, rate limit, single-flight, priority, retry, timeout."""

from .admission import PriorityAdmission
from .config import InboundRequest, OrchestratedRequest, Priority, RouteConfig, compute_dedupe_key
from .orchestrator import RequestOrchestrator
from .retry import backoff_delay, classify
from .single_flight import SingleFlight

__all__ = [
    "InboundRequest",
    "OrchestratedRequest",
    "Priority",
    "PriorityAdmission",
    "RequestOrchestrator",
    "RouteConfig",
    "SingleFlight",
    "backoff_delay",
    "classify",
    "compute_dedupe_key",
]
