"""
Queue engine module.
Contains the in-memory job queue and the job handler registry.
"""

from formqueue.engine.handlers import (
    execute_job,
    get_handler,
    list_handlers,
    register_handler,
    validate_payload,
)
from formqueue.engine.queue import QueueEngine, WorkHandler

__all__ = [
    "QueueEngine",
    "WorkHandler",
    "execute_job",
    "get_handler",
    "list_handlers",
    "register_handler",
    "validate_payload",
]
