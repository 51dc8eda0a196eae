"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states inside the queue engine.

    State transitions:
    - WAITING -> PROCESSING (attempt started)
    - PROCESSING -> COMPLETED (success)
    - PROCESSING -> WAITING (retry, appended to the tail)
    - PROCESSING -> FAILED (max attempts reached)
    """

    WAITING = "waiting"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class OfflineStatus(StrEnum):
    """States of a record held in the client-side offline store."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"


class JobKind(StrEnum):
    """Registered unit-of-work types."""

    FORM_SUBMISSION = "form-submission"
    ECHO = "echo"


# Legal state machine edges
JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.WAITING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset(
        {JobStatus.COMPLETED, JobStatus.WAITING, JobStatus.FAILED}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# Default values
DEFAULT_MAX_ATTEMPTS = 3
MAX_ATTEMPTS_CEILING = 10
OFFLINE_ID_PREFIX = "offline-"

# API constants
API_PREFIX = "/api"
SUBMIT_PATH = "/api/submit"
QUEUE_TYPE = "In-Memory Queue"
FORM_FIELDS_REQUIRED_MESSAGE = "Name, email, and message are required"
OFFLINE_STORED_MESSAGE = "Form saved offline - will be submitted when back online"

# Metrics names
METRIC_QUEUE_DEPTH = "job_queue_depth"
METRIC_JOBS_SUBMITTED = "jobs_submitted_total"
METRIC_JOBS_COMPLETED = "jobs_completed_total"
METRIC_JOBS_RETRIED = "jobs_retried_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_OFFLINE_RECORDS = "offline_records_total"
METRIC_RECONCILE_PASSES = "reconcile_passes_total"
METRIC_API_REQUESTS = "api_requests_total"
METRIC_API_LATENCY = "api_request_latency_seconds"

# Trace span names
SPAN_SUBMIT_JOB = "submit_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_ROUTE_SUBMISSION = "route_submission"
SPAN_RECONCILE = "reconcile_offline_jobs"

# Engine event types
EVENT_JOB_CREATED = "job.created"
EVENT_JOB_STARTED = "job.started"
EVENT_JOB_COMPLETED = "job.completed"
EVENT_JOB_FAILED = "job.failed"
EVENT_JOB_RETRIED = "job.retried"

# Cross-context notification types
OFFLINE_FORM_STORED = "OFFLINE_FORM_STORED"
OFFLINE_FORM_SYNCED = "OFFLINE_FORM_SYNCED"
OFFLINE_FORM_FAILED = "OFFLINE_FORM_FAILED"

# Peer (cross-context) message types
PEER_SYNC_OFFLINE_JOBS = "SYNC_OFFLINE_JOBS"
PEER_PROCESS_OFFLINE_FORMS = "PROCESS_OFFLINE_FORMS"
PEER_STORE_OFFLINE_FORM = "STORE_OFFLINE_FORM"
