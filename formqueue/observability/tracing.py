"""
OpenTelemetry tracing setup.

Spans are always recorded in-process (log records pick up their ids);
they are exported over OTLP only when ``otel_enabled`` is set.
"""

import logging
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Tracer

from formqueue import __version__
from formqueue.config import Settings, get_settings

logger = logging.getLogger(__name__)

_provider: TracerProvider | None = None
_tracer: Tracer | None = None


def _build_provider(settings: Settings, console: bool) -> TracerProvider:
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": __version__,
            }
        )
    )

    if settings.otel_enabled:
        exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info(
            "Exporting spans over OTLP",
            extra={"endpoint": settings.otel_exporter_otlp_endpoint},
        )

    if console:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    return provider


def setup_tracing(console: bool = False) -> Tracer:
    """
    Install the process-wide tracer provider, once.

    Args:
        console: Also print finished spans to stdout.

    Returns:
        The package tracer.
    """
    global _provider, _tracer

    settings = get_settings()
    if _provider is None:
        _provider = _build_provider(settings, console)
        trace.set_tracer_provider(_provider)

    _tracer = trace.get_tracer(settings.otel_service_name, __version__)
    return _tracer


def instrument_fastapi(app: Any) -> None:
    """Add request spans to a FastAPI application."""
    FastAPIInstrumentor.instrument_app(app)


def get_tracer() -> Tracer:
    """Package tracer; sets tracing up on first use."""
    return _tracer or setup_tracing()
