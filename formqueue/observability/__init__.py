"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from formqueue.observability.logging import bound_context, setup_logging
from formqueue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from formqueue.observability.tracing import get_tracer, instrument_fastapi, setup_tracing

__all__ = [
    "setup_logging",
    "bound_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
    "instrument_fastapi",
]
