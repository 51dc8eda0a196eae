"""
API module.
Contains the FastAPI application, routes, and WebSocket push.
"""

from formqueue.api.main import create_app, run

__all__ = ["create_app", "run"]
