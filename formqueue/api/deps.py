"""
FastAPI dependencies.
"""

from typing import Annotated

from fastapi import Depends, Request

from formqueue.engine.queue import QueueEngine


def get_engine(request: Request) -> QueueEngine:
    """Queue engine owned by the application."""
    return request.app.state.engine


Engine = Annotated[QueueEngine, Depends(get_engine)]
