"""
Type definitions for the form queue.
Contains input/output type definitions grouped by module.
"""

from formqueue.types.api import (
    CreateJobRequest,
    ErrorResponse,
    HealthResponse,
    QueueStatsResponse,
    SubmissionAck,
    SubmitResponse,
)
from formqueue.types.events import (
    JobEvent,
    OfflineNotification,
    WebSocketMessage,
)
from formqueue.types.job import (
    FormSubmission,
    JobContext,
    JobRecord,
    JobResult,
    JobView,
    QueueStats,
)
from formqueue.types.offline import OfflineRecord

__all__ = [
    # API types
    "CreateJobRequest",
    "SubmitResponse",
    "SubmissionAck",
    "QueueStatsResponse",
    "HealthResponse",
    "ErrorResponse",
    # Job types
    "JobRecord",
    "JobView",
    "JobContext",
    "JobResult",
    "FormSubmission",
    "QueueStats",
    # Offline types
    "OfflineRecord",
    # Event types
    "JobEvent",
    "WebSocketMessage",
    "OfflineNotification",
]
