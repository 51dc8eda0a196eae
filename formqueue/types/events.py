"""
Event type definitions for engine events, WebSocket pushes and
cross-context offline notifications.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from formqueue.constants import (
    EVENT_JOB_COMPLETED,
    EVENT_JOB_CREATED,
    EVENT_JOB_FAILED,
    EVENT_JOB_RETRIED,
    EVENT_JOB_STARTED,
    OFFLINE_FORM_FAILED,
    OFFLINE_FORM_STORED,
    OFFLINE_FORM_SYNCED,
    JobStatus,
)
from formqueue.types.job import JobRecord, JobView, utcnow
from formqueue.types.offline import OfflineRecord


class JobEvent(BaseModel):
    """
    Event emitted when job state changes.
    Used for WebSocket notifications and engine subscribers.
    """

    event_type: str
    job_id: str
    status: JobStatus
    timestamp: datetime
    data: dict[str, Any] | None = None

    @classmethod
    def _for(cls, event_type: str, job: JobRecord, **data: Any) -> "JobEvent":
        return cls(
            event_type=event_type,
            job_id=job.id,
            status=job.status,
            timestamp=utcnow(),
            data={"attempt": job.attempts, **data},
        )

    @classmethod
    def job_created(cls, job: JobRecord) -> "JobEvent":
        """Create a job created event."""
        return cls._for(EVENT_JOB_CREATED, job, kind=job.kind)

    @classmethod
    def job_started(cls, job: JobRecord) -> "JobEvent":
        """Create a job started event."""
        return cls._for(EVENT_JOB_STARTED, job)

    @classmethod
    def job_completed(
        cls,
        job: JobRecord,
        result: dict[str, Any] | None = None,
    ) -> "JobEvent":
        """Create a job completed event."""
        return cls._for(EVENT_JOB_COMPLETED, job, result=result)

    @classmethod
    def job_retried(cls, job: JobRecord, error: str) -> "JobEvent":
        """Create an event for a failed attempt that will be retried."""
        return cls._for(EVENT_JOB_RETRIED, job, error=error, will_retry=True)

    @classmethod
    def job_failed(cls, job: JobRecord, error: str) -> "JobEvent":
        """Create a terminal failure event."""
        return cls._for(EVENT_JOB_FAILED, job, error=error, will_retry=False)


class WebSocketMessage(BaseModel):
    """
    Message format for WebSocket communication.
    """

    type: str
    payload: dict[str, Any]
    timestamp: datetime

    @classmethod
    def from_event(cls, event: JobEvent) -> "WebSocketMessage":
        """Create a WebSocket message from a job event."""
        return cls(
            type=event.event_type,
            payload={
                "job_id": event.job_id,
                "status": event.status,
                "data": event.data,
            },
            timestamp=event.timestamp,
        )


class OfflineNotification(BaseModel):
    """
    Cross-context notification about an offline record.

    Delivery is at-least-once, so consumers must tolerate duplicates.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str
    offline_job_id: str
    job: OfflineRecord | None = None
    online_job: JobView | None = None
    timestamp: datetime = Field(default_factory=utcnow)

    @classmethod
    def stored(cls, record: OfflineRecord) -> "OfflineNotification":
        return cls(type=OFFLINE_FORM_STORED, offline_job_id=record.id, job=record)

    @classmethod
    def synced(cls, record: OfflineRecord, online_job: JobView) -> "OfflineNotification":
        return cls(
            type=OFFLINE_FORM_SYNCED,
            offline_job_id=record.id,
            online_job=online_job,
        )

    @classmethod
    def failed(cls, record: OfflineRecord) -> "OfflineNotification":
        return cls(type=OFFLINE_FORM_FAILED, offline_job_id=record.id, job=record)
