"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from formqueue.constants import DEFAULT_MAX_ATTEMPTS, MAX_ATTEMPTS_CEILING, QUEUE_TYPE
from formqueue.types.job import JobView, QueueStats
from formqueue.types.offline import OfflineRecord


class CreateJobRequest(BaseModel):
    """Request body for the generic intake contract."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    kind: str = Field(..., description="Unit-of-work type")
    payload: dict[str, Any] = Field(..., description="Job payload data")
    max_attempts: int = Field(
        default=DEFAULT_MAX_ATTEMPTS,
        ge=1,
        le=MAX_ATTEMPTS_CEILING,
        description="Maximum processing attempts",
    )


class SubmitResponse(BaseModel):
    """Acknowledgment returned by intake."""

    message: str = "Form submitted successfully"
    job: JobView
    offline: bool = False


class SubmissionAck(BaseModel):
    """
    Acknowledgment returned to callers of the submission router.

    Shaped like ``SubmitResponse`` whichever path was taken; ``offline``
    tells the two apart.
    """

    message: str
    job: JobView | OfflineRecord
    offline: bool = False


class QueueStatsResponse(BaseModel):
    """Queue statistics response."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    queue_type: str = QUEUE_TYPE
    redis_required: bool = False
    stats: QueueStats
    timestamp: datetime


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    engine: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: Any | None = None
