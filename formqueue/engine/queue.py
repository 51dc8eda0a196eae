"""
In-memory job queue engine.

The engine owns the job table and the FIFO waiting list and runs at most
one worker task at a time. Jobs are processed strictly one after another;
a failed attempt is re-appended to the tail of the waiting list until the
job runs out of attempts. Terminal jobs stay queryable for a retention
period and are then removed from the table.
"""

import asyncio
import inspect
import logging
import threading
import time
from collections import Counter, deque
from collections.abc import Awaitable, Callable
from typing import Any

from formqueue.config import get_settings
from formqueue.constants import MAX_ATTEMPTS_CEILING, SPAN_EXECUTE_JOB, JobStatus
from formqueue.engine.handlers import execute_job, validate_payload
from formqueue.errors import EngineNotRunningError, JobValidationError
from formqueue.observability.logging import bound_context
from formqueue.observability.metrics import get_metrics
from formqueue.observability.tracing import get_tracer
from formqueue.types.events import JobEvent
from formqueue.types.job import JobContext, JobRecord, JobResult, QueueStats, utcnow

logger = logging.getLogger(__name__)

# Pluggable "do work" step. Raising or returning an unsuccessful JobResult
# both count as a failed attempt.
WorkHandler = Callable[[JobContext], Awaitable[JobResult | Any]]
EventListener = Callable[[JobEvent], Awaitable[None] | None]


class QueueEngine:
    """
    Single-consumer in-memory job queue.

    Lifecycle:
    - ``add`` accepts work at any time before ``stop``
    - ``start`` enables the worker; ``stop`` drains the current attempt
    - ``get_job`` / ``get_stats`` are plain lookups against current state
    """

    def __init__(
        self,
        work: WorkHandler | None = None,
        *,
        default_max_attempts: int | None = None,
        completed_retention: float | None = None,
        failed_retention: float | None = None,
        inter_job_pause: float | None = None,
        shutdown_timeout: float | None = None,
    ):
        """
        Initialize the engine.

        Args:
            work: Work step run for every attempt. Defaults to the handler registry.
            default_max_attempts: Attempts ceiling when intake does not give one.
            completed_retention: Seconds a completed job stays queryable.
            failed_retention: Seconds a failed job stays queryable.
            inter_job_pause: Seconds to pause between two processed jobs.
            shutdown_timeout: Seconds ``stop`` waits for the current attempt.
        """
        settings = get_settings()

        self._work: WorkHandler = work or execute_job
        self.default_max_attempts = default_max_attempts or settings.default_max_attempts
        self.completed_retention = _pick(completed_retention, settings.completed_retention_seconds)
        self.failed_retention = _pick(failed_retention, settings.failed_retention_seconds)
        self.inter_job_pause = _pick(inter_job_pause, settings.inter_job_pause_seconds)
        self.shutdown_timeout = _pick(shutdown_timeout, settings.shutdown_timeout_seconds)

        # Job table and waiting list form one critical resource
        self._mutex = threading.Lock()
        self._jobs: dict[str, JobRecord] = {}
        self._waiting: deque[JobRecord] = deque()

        self._running = False
        self._stopped = False
        self._processing = False
        self._worker: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()

        self._expiry: dict[str, asyncio.TimerHandle] = {}
        self._listeners: list[EventListener] = []
        self._listener_tasks: set[asyncio.Task] = set()
        self._metrics = get_metrics()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_processing(self) -> bool:
        """True while a worker task is draining the waiting list."""
        return self._processing

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Enable the worker and process anything already waiting."""
        self._running = True
        self._stopped = False
        self._resume_retention()
        logger.info(
            "Queue engine started",
            extra={"waiting": len(self._waiting), "total": len(self._jobs)},
        )
        self._kick()

    async def stop(self) -> None:
        """
        Stop the engine.

        Waits for the in-progress attempt up to ``shutdown_timeout`` and
        cancels it after that; a cancelled job is re-queued at the head.
        Pending retention timers are cancelled and re-armed by ``start``;
        the job table is left as is.
        """
        logger.info("Queue engine stopping")
        self._running = False
        self._stopped = True

        worker = self._worker
        if worker is not None and not worker.done():
            try:
                await asyncio.wait_for(asyncio.shield(worker), self.shutdown_timeout)
            except TimeoutError:
                logger.warning("Worker did not finish in time, cancelling")
                worker.cancel()
                try:
                    await worker
                except asyncio.CancelledError:
                    pass

        for handle in self._expiry.values():
            handle.cancel()
        self._expiry.clear()

        if self._listener_tasks:
            await asyncio.gather(*self._listener_tasks, return_exceptions=True)

        logger.info("Queue engine stopped")

    async def wait_idle(self) -> None:
        """Wait until no worker task is running."""
        await self._idle.wait()

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def add(
        self,
        kind: str,
        payload: dict[str, Any],
        max_attempts: int | None = None,
    ) -> JobRecord:
        """
        Admit a new unit of work.

        Args:
            kind: Registered job kind.
            payload: Payload for the work step.
            max_attempts: Attempts ceiling, defaults to the engine's.

        Returns:
            Snapshot of the created record, in WAITING with zero attempts.

        Raises:
            JobValidationError: Payload is invalid for ``kind``; nothing is created.
            EngineNotRunningError: The engine was stopped.
        """
        if self._stopped:
            raise EngineNotRunningError("Queue engine is stopped")

        data = validate_payload(kind, payload)

        attempts_ceiling = self.default_max_attempts if max_attempts is None else max_attempts
        if not 1 <= attempts_ceiling <= MAX_ATTEMPTS_CEILING:
            raise JobValidationError(
                f"max_attempts must be between 1 and {MAX_ATTEMPTS_CEILING}"
            )

        job = JobRecord(kind=kind, payload=data, max_attempts=attempts_ceiling)

        with self._mutex:
            self._jobs[job.id] = job
            self._waiting.append(job)
            depth = len(self._waiting)

        snapshot = job.snapshot()

        self._metrics.record_job_submitted(kind)
        self._metrics.update_queue_depth(depth)
        logger.info(
            "Job queued",
            extra={"job_id": job.id, "kind": kind, "queue_depth": depth},
        )

        self._emit(JobEvent.job_created(job))
        self._kick()

        return snapshot

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> JobRecord | None:
        """
        Get a snapshot of a job.

        Returns None both for expired jobs and for ids that never existed.
        """
        with self._mutex:
            job = self._jobs.get(job_id)
            return job.snapshot() if job is not None else None

    def get_stats(self) -> QueueStats:
        """Count live jobs by status."""
        with self._mutex:
            counts = Counter(job.status for job in self._jobs.values())
            total = len(self._jobs)

        return QueueStats(
            total=total,
            waiting=counts[JobStatus.WAITING],
            processing=counts[JobStatus.PROCESSING],
            completed=counts[JobStatus.COMPLETED],
            failed=counts[JobStatus.FAILED],
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """
        Register a listener for job events.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: JobEvent) -> None:
        """Deliver ``event`` to listeners; listener errors are logged only."""
        for listener in list(self._listeners):
            try:
                result = listener(event)
            except Exception:
                logger.exception(
                    "Job event listener failed",
                    extra={"event_type": event.event_type, "job_id": event.job_id},
                )
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._listener_tasks.add(task)
                task.add_done_callback(self._listener_done)

    def _listener_done(self, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Async job event listener failed",
                exc_info=task.exception(),
            )

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _kick(self) -> None:
        """Launch the worker if the engine runs and no worker is active."""
        if not self._running or self._processing:
            return
        with self._mutex:
            if not self._waiting:
                return

        self._processing = True
        self._idle.clear()
        self._worker = asyncio.get_running_loop().create_task(
            self._process_jobs(),
            name="queue-engine-worker",
        )

    async def _process_jobs(self) -> None:
        """Drain the waiting list one job at a time."""
        try:
            while self._running:
                with self._mutex:
                    if not self._waiting:
                        break
                    job = self._waiting.popleft()
                    depth = len(self._waiting)

                self._metrics.update_queue_depth(depth)
                await self._process_job(job)

                if self.inter_job_pause > 0:
                    await asyncio.sleep(self.inter_job_pause)
        finally:
            self._processing = False
            self._worker = None
            self._idle.set()

    async def _process_job(self, job: JobRecord) -> None:
        """
        Run one attempt of ``job`` and apply the outcome.

        Handles the full attempt:
        1. Transition to PROCESSING (counts the attempt)
        2. Run the work step
        3. COMPLETED, back to WAITING at the tail, or FAILED
        """
        with self._mutex:
            job.transition(JobStatus.PROCESSING)

        self._emit(JobEvent.job_started(job))

        start_time = time.monotonic()
        error: str | None = None
        output: dict[str, Any] | None = None

        with bound_context(job_id=job.id, attempt=job.attempts):
            logger.info(
                "Processing job",
                extra={"kind": job.kind, "max_attempts": job.max_attempts},
            )

            with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                span.set_attribute("job_id", job.id)
                span.set_attribute("kind", job.kind)
                span.set_attribute("attempt", job.attempts)

                try:
                    result = await self._work(JobContext.from_record(job))
                except asyncio.CancelledError:
                    self._interrupt(job)
                    raise
                except Exception as e:
                    logger.exception("Work step raised")
                    error = str(e) or e.__class__.__name__
                else:
                    if isinstance(result, JobResult):
                        if result.success:
                            output = result.output
                        else:
                            error = result.error or "Unknown error"

            duration = time.monotonic() - start_time

            if error is None:
                self._complete(job, output, duration)
            elif job.attempts < job.max_attempts:
                self._retry(job, error, duration)
            else:
                self._fail(job, error, duration)

    def _complete(self, job: JobRecord, output: dict[str, Any] | None, duration: float) -> None:
        with self._mutex:
            job.transition(JobStatus.COMPLETED)
            job.last_error = None

        self._schedule_removal(job.id, self._retention_for(job))
        self._metrics.record_job_attempt(job.kind, "completed", duration)

        logger.info(
            "Job completed",
            extra={"attempts": job.attempts, "duration": f"{duration:.2f}s"},
        )
        self._emit(JobEvent.job_completed(job, output))

    def _retry(self, job: JobRecord, error: str, duration: float) -> None:
        with self._mutex:
            job.last_error = error
            job.transition(JobStatus.WAITING)
            self._waiting.append(job)
            depth = len(self._waiting)

        self._metrics.record_job_attempt(job.kind, "retried", duration)
        self._metrics.update_queue_depth(depth)

        logger.warning(
            "Job attempt failed, re-queued",
            extra={
                "error": error,
                "attempts": job.attempts,
                "max_attempts": job.max_attempts,
            },
        )
        self._emit(JobEvent.job_retried(job, error))

    def _fail(self, job: JobRecord, error: str, duration: float) -> None:
        with self._mutex:
            job.last_error = error
            job.transition(JobStatus.FAILED)

        self._schedule_removal(job.id, self._retention_for(job))
        self._metrics.record_job_attempt(job.kind, "failed", duration)

        logger.error(
            "Job failed permanently",
            extra={"error": error, "attempts": job.attempts},
        )
        self._emit(JobEvent.job_failed(job, error))

    def _interrupt(self, job: JobRecord) -> None:
        """
        Settle an attempt cancelled by ``stop``.

        The job goes back to the head of the waiting list so a restart picks
        it up first; if that was its last attempt it fails instead.
        """
        error = "Interrupted by shutdown"
        if job.attempts >= job.max_attempts:
            self._fail(job, error, 0.0)
            return

        with self._mutex:
            job.last_error = error
            job.transition(JobStatus.WAITING)
            self._waiting.appendleft(job)
            depth = len(self._waiting)

        self._metrics.update_queue_depth(depth)
        logger.warning(
            "Job attempt interrupted, re-queued at head",
            extra={"attempts": job.attempts, "max_attempts": job.max_attempts},
        )

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def _retention_for(self, job: JobRecord) -> float:
        if job.status == JobStatus.COMPLETED:
            return self.completed_retention
        return self.failed_retention

    def _resume_retention(self) -> None:
        """Re-arm removal timers for terminal jobs left over from a ``stop``."""
        now = utcnow()
        with self._mutex:
            pending = [
                job
                for job in self._jobs.values()
                if job.is_terminal and job.id not in self._expiry
            ]

        for job in pending:
            elapsed = (now - job.updated_at).total_seconds()
            self._schedule_removal(job.id, max(0.0, self._retention_for(job) - elapsed))

    def _schedule_removal(self, job_id: str, delay: float) -> None:
        loop = asyncio.get_running_loop()
        self._expiry[job_id] = loop.call_later(delay, self._expire, job_id)

    def _expire(self, job_id: str) -> None:
        self._expiry.pop(job_id, None)
        with self._mutex:
            removed = self._jobs.pop(job_id, None)
        if removed is not None:
            logger.debug(
                "Expired terminal job",
                extra={"job_id": job_id, "status": removed.status},
            )


def _pick(value: float | None, default: float) -> float:
    return default if value is None else value
