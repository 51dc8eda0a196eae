"""
FastAPI application entry point.
"""

import logging
import time
from collections.abc import Callable
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from formqueue import __version__
from formqueue.api.routes import health_router, jobs_router
from formqueue.api.websocket import JobUpdatesHub, serve_job_updates
from formqueue.config import get_settings
from formqueue.engine.queue import QueueEngine
from formqueue.errors import EngineNotRunningError, JobValidationError
from formqueue.observability.logging import setup_logging
from formqueue.observability.metrics import get_metrics, setup_metrics
from formqueue.observability.tracing import instrument_fastapi, setup_tracing

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Sets up observability, starts the queue engine and stops it on shutdown.
    """
    setup_logging(component="server")
    setup_metrics()
    setup_tracing()

    engine: QueueEngine = app.state.engine
    unsubscribe = engine.subscribe(app.state.updates.publish)
    await engine.start()

    logger.info("Application started")

    yield

    unsubscribe()
    await engine.stop()
    logger.info("Application shutdown")


def create_metrics_middleware() -> Callable:
    """
    Create request metrics middleware.

    Returns:
        The middleware function.
    """

    async def metrics_middleware(request: Request, call_next: Callable):
        """Record count and latency of every HTTP request."""
        start = time.perf_counter()
        response = await call_next(request)

        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        get_metrics().record_api_request(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
            duration_seconds=time.perf_counter() - start,
        )
        return response

    return metrics_middleware


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: JobValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": exc.message, "detail": exc.errors or None},
    )


async def engine_stopped_handler(request: Request, exc: EngineNotRunningError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"error": str(exc)},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", extra={"path": request.url.path})
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


def create_app(engine: QueueEngine | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        engine: Queue engine to serve. A new one is created when omitted.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="Form Queue API",
        description="In-memory job queue with offline-first submission support",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.state.engine = engine or QueueEngine()
    app.state.updates = JobUpdatesHub()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(
        BaseHTTPMiddleware,
        dispatch=create_metrics_middleware(),
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(JobValidationError, validation_exception_handler)
    app.add_exception_handler(EngineNotRunningError, engine_stopped_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router)
    app.include_router(jobs_router)

    @app.websocket("/ws/jobs")
    async def jobs_websocket(websocket: WebSocket):
        """
        WebSocket endpoint for real-time job updates.

        Clients receive every job event until they subscribe to specific jobs.
        """
        await serve_job_updates(websocket, app.state.updates)

    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    app = create_app()

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
