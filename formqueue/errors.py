"""
Domain exceptions shared by the queue engine and the offline client.
"""

from typing import Any


class FormQueueError(Exception):
    """Base class for all formqueue errors."""


class JobValidationError(FormQueueError):
    """Submission is structurally invalid for its kind. Never retried."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class InvalidTransitionError(FormQueueError):
    """Raised on an illegal job status transition."""

    def __init__(self, job_id: str, current: str, target: str):
        super().__init__(f"Job {job_id}: illegal transition {current} -> {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class EngineNotRunningError(FormQueueError):
    """Raised when the engine is used after it was stopped."""


class TransportError(FormQueueError):
    """Network-level failure talking to the queue server (unreachable, timeout)."""


class ServerError(FormQueueError):
    """Queue server answered with a non-success status."""

    def __init__(self, status_code: int, detail: str | None = None):
        super().__init__(f"HTTP {status_code}" + (f": {detail}" if detail else ""))
        self.status_code = status_code
        self.detail = detail


class SubmissionRejected(ServerError):
    """Queue server rejected the submission as invalid (4xx validation)."""
