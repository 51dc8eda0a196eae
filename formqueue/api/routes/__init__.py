"""
API routes module.
"""

from formqueue.api.routes.health import router as health_router
from formqueue.api.routes.jobs import router as jobs_router

__all__ = ["jobs_router", "health_router"]
