"""
Job handlers registry and implementations.

Each handler is registered for one job kind, optionally with a pydantic
schema that intake uses to reject structurally invalid payloads. Handlers
may run more than once for the same job, so they must be idempotent.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError

from formqueue.config import get_settings
from formqueue.constants import FORM_FIELDS_REQUIRED_MESSAGE, JobKind
from formqueue.errors import JobValidationError
from formqueue.types.job import FormSubmission, JobContext, JobResult

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[JobResult]]


@dataclass(frozen=True)
class RegisteredHandler:
    """A handler together with the payload schema of its kind."""

    handler: JobHandler
    schema: type[BaseModel] | None = None
    invalid_message: str | None = None


# Handler registry
_handlers: dict[str, RegisteredHandler] = {}


def register_handler(
    kind: str,
    schema: type[BaseModel] | None = None,
    invalid_message: str | None = None,
) -> Callable[[JobHandler], JobHandler]:
    """
    Decorator to register a job handler.

    Args:
        kind: The job kind this handler processes.
        schema: Optional pydantic model payloads of this kind must satisfy.
        invalid_message: Message reported when a payload fails the schema.

    Returns:
        Decorator function.

    Example:
        @register_handler("send_email", schema=EmailPayload)
        async def handle_send_email(context: JobContext) -> JobResult:
            ...
    """
    def decorator(handler: JobHandler) -> JobHandler:
        _handlers[kind] = RegisteredHandler(handler, schema, invalid_message)
        logger.debug(f"Registered handler for job kind: {kind}")
        return handler
    return decorator


def get_handler(kind: str) -> JobHandler | None:
    """
    Get the handler for a job kind.

    Args:
        kind: The job kind.

    Returns:
        The handler function or None if not found.
    """
    registered = _handlers.get(kind)
    return registered.handler if registered else None


def get_schema(kind: str) -> type[BaseModel] | None:
    """Get the payload schema registered for a job kind."""
    registered = _handlers.get(kind)
    return registered.schema if registered else None


def list_handlers() -> list[str]:
    """List all registered job kinds."""
    return list(_handlers.keys())


def validate_payload(kind: str, payload: Any) -> dict[str, Any]:
    """
    Check that ``payload`` is structurally valid for ``kind``.

    Args:
        kind: The job kind.
        payload: Submitted payload.

    Returns:
        The normalized payload.

    Raises:
        JobValidationError: Unknown kind or payload rejected by the schema.
    """
    registered = _handlers.get(kind)
    if registered is None:
        raise JobValidationError(f"Unknown job kind: {kind}")

    if not isinstance(payload, dict):
        raise JobValidationError("Payload must be a JSON object")

    if registered.schema is None:
        return dict(payload)

    try:
        model = registered.schema.model_validate(payload)
    except ValidationError as e:
        raise JobValidationError(
            registered.invalid_message or f"Invalid payload for {kind}",
            errors=e.errors(include_url=False, include_context=False),
        ) from e
    return model.model_dump()


# ============================================================================
# Built-in job handlers
# ============================================================================


@register_handler(
    JobKind.FORM_SUBMISSION,
    schema=FormSubmission,
    invalid_message=FORM_FIELDS_REQUIRED_MESSAGE,
)
async def handle_form_submission(context: JobContext) -> JobResult:
    """
    Process a submitted form.

    Simulates variable-duration work followed by an external call, with a
    configurable random failure rate.
    """
    settings = get_settings()

    processing_time = random.uniform(settings.work_min_seconds, settings.work_max_seconds)
    await asyncio.sleep(processing_time)

    if random.random() < settings.work_failure_rate:
        logger.warning(
            "Random processing error",
            extra={"job_id": context.job_id, "attempt": context.attempt},
        )
        return JobResult(
            success=False,
            error="Random processing error",
        )

    # Simulated external API call
    await asyncio.sleep(settings.work_external_call_seconds)

    return JobResult(
        success=True,
        output={"delivered_to": context.payload.get("email")},
        duration_ms=(processing_time + settings.work_external_call_seconds) * 1000,
    )


@register_handler(JobKind.ECHO)
async def handle_echo(context: JobContext) -> JobResult:
    """
    Echo handler for testing.
    Returns the payload as output.
    """
    return JobResult(
        success=True,
        output={"echo": context.payload},
    )


async def execute_job(context: JobContext) -> JobResult:
    """
    Execute a job using the handler registered for its kind.

    Args:
        context: The job context.

    Returns:
        JobResult from the handler.
    """
    handler = get_handler(context.kind)

    if handler is None:
        logger.error(
            f"No handler for job kind: {context.kind}",
            extra={"job_id": context.job_id},
        )
        return JobResult(
            success=False,
            error=f"No handler registered for job kind: {context.kind}",
        )

    try:
        return await handler(context)
    except Exception as e:
        logger.exception(
            "Handler raised exception",
            extra={"job_id": context.job_id, "error": str(e)},
        )
        return JobResult(
            success=False,
            error=f"Handler exception: {str(e)}",
        )
