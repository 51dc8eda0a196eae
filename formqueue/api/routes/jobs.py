"""
Job intake and status routes.
"""

from typing import Any

from fastapi import APIRouter, Body, HTTPException, status

from formqueue.api.deps import Engine
from formqueue.constants import API_PREFIX, SPAN_SUBMIT_JOB, JobKind
from formqueue.observability.tracing import get_tracer
from formqueue.types.api import CreateJobRequest, QueueStatsResponse, SubmitResponse
from formqueue.types.job import JobView, utcnow

router = APIRouter(prefix=API_PREFIX, tags=["Jobs"])


@router.post(
    "/submit",
    response_model=SubmitResponse,
    summary="Submit a form",
    description="Queue a form submission for processing.",
)
async def submit_form(
    engine: Engine,
    form: dict[str, Any] = Body(...),
) -> SubmitResponse:
    """
    Queue a ``form-submission`` job.

    The server stamps ``submittedAt`` into the payload. Missing or empty
    ``name``, ``email`` or ``message`` is rejected with 400.

    Args:
        engine: The queue engine.
        form: Submitted form fields.

    Returns:
        SubmitResponse with the created job.
    """
    with get_tracer().start_as_current_span(SPAN_SUBMIT_JOB) as span:
        span.set_attribute("kind", JobKind.FORM_SUBMISSION.value)
        job = engine.add(
            JobKind.FORM_SUBMISSION,
            {**form, "submittedAt": utcnow().isoformat()},
        )

    return SubmitResponse(
        message="Form submitted successfully",
        job=JobView.from_record(job),
    )


@router.post(
    "/jobs",
    response_model=SubmitResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a job",
    description="Generic intake: queue a job of any registered kind.",
)
async def create_job(request: CreateJobRequest, engine: Engine) -> SubmitResponse:
    """
    Create a new job.

    Args:
        request: Job creation request.
        engine: The queue engine.

    Returns:
        SubmitResponse with the created job.
    """
    with get_tracer().start_as_current_span(SPAN_SUBMIT_JOB) as span:
        span.set_attribute("kind", request.kind)
        job = engine.add(request.kind, request.payload, request.max_attempts)

    return SubmitResponse(
        message="Job created successfully",
        job=JobView.from_record(job),
    )


@router.get(
    "/job/{job_id}",
    response_model=JobView,
    summary="Get job status",
    description="Current state of a job. Expired and unknown ids both return 404.",
)
async def get_job(job_id: str, engine: Engine) -> JobView:
    """
    Get job details by ID.

    Raises:
        HTTPException: If the job is not in the live table.
    """
    job = engine.get_job(job_id)

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    return JobView.from_record(job)


@router.get(
    "/queue-stats",
    response_model=QueueStatsResponse,
    summary="Get queue statistics",
    description="Counts of live jobs by status.",
)
async def get_queue_stats(engine: Engine) -> QueueStatsResponse:
    """Point-in-time queue statistics."""
    return QueueStatsResponse(
        stats=engine.get_stats(),
        timestamp=utcnow(),
    )
