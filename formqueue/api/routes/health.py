"""
Health, probe and metrics routes.

``/live`` doubles as the offline client's reachability probe, so it
answers HEAD and never touches the engine.
"""

from fastapi import APIRouter
from fastapi.responses import Response

from formqueue import __version__
from formqueue.api.deps import Engine
from formqueue.observability.metrics import get_metrics
from formqueue.types.api import HealthResponse
from formqueue.types.job import utcnow

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse, summary="Service health")
async def health_check(engine: Engine) -> HealthResponse:
    """Healthy while the queue engine accepts work, degraded after it stopped."""
    running = engine.is_running
    return HealthResponse(
        status="healthy" if running else "degraded",
        version=__version__,
        engine="running" if running else "stopped",
        timestamp=utcnow(),
    )


@router.get("/ready", summary="Readiness probe")
async def readiness_check(engine: Engine) -> dict:
    return {"ready": engine.is_running}


@router.api_route("/live", methods=["GET", "HEAD"], summary="Liveness and reachability probe")
async def liveness_check() -> dict:
    return {"alive": True}


@router.get("/metrics", summary="Prometheus metrics")
async def metrics() -> Response:
    """Prometheus exposition of the engine, API and client metrics."""
    collector = get_metrics()
    return Response(content=collector.get_metrics(), media_type=collector.get_content_type())
