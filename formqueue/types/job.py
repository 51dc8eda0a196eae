"""
Job-related type definitions for internal use.
"""

import random
import string
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from formqueue.constants import (
    DEFAULT_MAX_ATTEMPTS,
    JOB_TRANSITIONS,
    TERMINAL_STATUSES,
    JobStatus,
)
from formqueue.errors import InvalidTransitionError

_BASE36 = string.digits + string.ascii_lowercase


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def random_suffix(length: int) -> str:
    """Random lowercase base36 string."""
    return "".join(random.choices(_BASE36, k=length))


def generate_job_id() -> str:
    """Millisecond timestamp followed by a random base36 suffix."""
    return f"{int(time.time() * 1000)}{random_suffix(11)}"


@dataclass
class JobRecord:
    """
    Canonical unit of work tracked by the queue engine.

    Only the engine mutates status and attempts, through ``transition``.
    """

    kind: str
    payload: dict[str, Any]
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    id: str = field(default_factory=generate_job_id)
    submitted_at: datetime = field(default_factory=utcnow)
    status: JobStatus = JobStatus.WAITING
    attempts: int = 0
    last_error: str | None = None
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        """Check if the job reached completed or failed."""
        return self.status in TERMINAL_STATUSES

    @property
    def is_exhausted(self) -> bool:
        """Check if no attempts remain."""
        return self.attempts >= self.max_attempts

    def transition(self, target: JobStatus) -> None:
        """
        Move the job to ``target``.

        Entering PROCESSING counts as an attempt.

        Raises:
            InvalidTransitionError: If the edge is not part of the state machine.
        """
        if target not in JOB_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.id, self.status, target)
        if target == JobStatus.PROCESSING:
            self.attempts += 1
        self.status = target
        self.updated_at = utcnow()

    def snapshot(self) -> "JobRecord":
        """Copy safe to hand to callers outside the engine."""
        return replace(self, payload=dict(self.payload))


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    """

    job_id: str
    kind: str
    attempt: int
    max_attempts: int
    payload: dict[str, Any]

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last retry attempt."""
        return self.attempt >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining retry attempts."""
        return max(0, self.max_attempts - self.attempt)

    @classmethod
    def from_record(cls, record: JobRecord) -> "JobContext":
        return cls(
            job_id=record.id,
            kind=record.kind,
            attempt=record.attempts,
            max_attempts=record.max_attempts,
            payload=dict(record.payload),
        )


class JobResult(BaseModel):
    """
    Result of job execution.
    Returned by job handlers after processing.
    """

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: float | None = None


class FormSubmission(BaseModel):
    """Payload schema for the ``form-submission`` kind."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="allow")

    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)


class JobView(BaseModel):
    """
    Wire representation of a job record.

    Serialized with camelCase keys: ``{id, type, status, attempts,
    maxAttempts, timestamp, data, lastError}``.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    type: str
    status: JobStatus
    attempts: int
    max_attempts: int
    timestamp: datetime
    data: dict[str, Any]
    last_error: str | None = None

    @classmethod
    def from_record(cls, record: JobRecord) -> "JobView":
        return cls(
            id=record.id,
            type=record.kind,
            status=record.status,
            attempts=record.attempts,
            max_attempts=record.max_attempts,
            timestamp=record.submitted_at,
            data=record.payload,
            last_error=record.last_error,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class QueueStats(BaseModel):
    """Point-in-time counts over the live job table."""

    total: int = 0
    waiting: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
