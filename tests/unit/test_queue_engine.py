"""
Unit tests for the in-memory queue engine.
"""

import asyncio
import re
from typing import Any

import pytest

from formqueue.constants import (
    EVENT_JOB_COMPLETED,
    EVENT_JOB_CREATED,
    EVENT_JOB_FAILED,
    EVENT_JOB_RETRIED,
    EVENT_JOB_STARTED,
    FORM_FIELDS_REQUIRED_MESSAGE,
    JobKind,
    JobStatus,
)
from formqueue.engine.queue import QueueEngine
from formqueue.errors import EngineNotRunningError, InvalidTransitionError, JobValidationError
from formqueue.types.events import JobEvent
from formqueue.types.job import JobContext, JobRecord, JobResult


class ScriptedWork:
    """
    Work step driven by the payload.

    ``fail_until`` makes attempts up to that number fail; ``raise`` makes
    the step raise instead of returning a failed result.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls: list[tuple[str, int]] = []
        self.active = 0
        self.max_active = 0

    async def __call__(self, context: JobContext) -> JobResult:
        self.calls.append((context.payload["name"], context.attempt))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if context.attempt <= context.payload.get("fail_until", 0):
                if context.payload.get("raise"):
                    raise RuntimeError(f"boom {context.attempt}")
                return JobResult(success=False, error=f"attempt {context.attempt} failed")
            return JobResult(success=True, output={"name": context.payload["name"]})
        finally:
            self.active -= 1


def echo(name: str, **extra: Any) -> dict[str, Any]:
    return {"name": name, **extra}


@pytest.fixture
def work() -> ScriptedWork:
    return ScriptedWork()


@pytest.fixture
async def scripted_engine(work: ScriptedWork):
    engine = QueueEngine(
        work,
        inter_job_pause=0,
        completed_retention=5,
        failed_retention=5,
    )
    await engine.start()
    yield engine
    await engine.stop()


class TestIntake:
    """Tests for adding jobs."""

    async def test_add_returns_waiting_snapshot(self, scripted_engine: QueueEngine):
        """A new job starts in WAITING with no attempts."""
        job = scripted_engine.add(JobKind.ECHO, echo("a"))

        assert job.status == JobStatus.WAITING
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert job.kind == JobKind.ECHO
        assert re.fullmatch(r"\d{13}[0-9a-z]{11}", job.id)

    async def test_ids_are_unique(self, scripted_engine: QueueEngine):
        ids = {scripted_engine.add(JobKind.ECHO, echo(str(i))).id for i in range(50)}
        assert len(ids) == 50

    async def test_invalid_form_creates_nothing(self, scripted_engine: QueueEngine):
        """Structurally invalid payloads are rejected before a job exists."""
        with pytest.raises(JobValidationError) as exc_info:
            scripted_engine.add(
                JobKind.FORM_SUBMISSION,
                {"name": "Ada", "email": "", "message": "hi"},
            )

        assert exc_info.value.message == FORM_FIELDS_REQUIRED_MESSAGE
        assert scripted_engine.get_stats().total == 0

    async def test_unknown_kind_rejected(self, scripted_engine: QueueEngine):
        with pytest.raises(JobValidationError):
            scripted_engine.add("nonexistent", {})

    @pytest.mark.parametrize("max_attempts", [-1, 0, 11])
    async def test_max_attempts_out_of_range(self, scripted_engine: QueueEngine, max_attempts: int):
        with pytest.raises(JobValidationError):
            scripted_engine.add(JobKind.ECHO, echo("a"), max_attempts=max_attempts)

    async def test_add_after_stop_fails(self, work: ScriptedWork):
        engine = QueueEngine(work)
        await engine.start()
        await engine.stop()

        with pytest.raises(EngineNotRunningError):
            engine.add(JobKind.ECHO, echo("a"))

    async def test_jobs_wait_until_start(self, work: ScriptedWork):
        """Jobs added before start are processed once the engine starts."""
        engine = QueueEngine(work, inter_job_pause=0)
        job = engine.add(JobKind.ECHO, echo("early"))

        await asyncio.sleep(0.02)
        assert work.calls == []
        assert engine.get_job(job.id).status == JobStatus.WAITING

        await engine.start()
        await engine.wait_idle()

        assert engine.get_job(job.id).status == JobStatus.COMPLETED
        await engine.stop()


class TestProcessing:
    """Tests for the worker loop."""

    async def test_successful_job_completes(self, scripted_engine: QueueEngine):
        job = scripted_engine.add(JobKind.ECHO, echo("a"))
        await scripted_engine.wait_idle()

        done = scripted_engine.get_job(job.id)
        assert done.status == JobStatus.COMPLETED
        assert done.attempts == 1
        assert done.last_error is None

    async def test_fifo_with_retry_at_tail(
        self,
        scripted_engine: QueueEngine,
        work: ScriptedWork,
    ):
        """A failed attempt goes behind every job that was already waiting."""
        scripted_engine.add(JobKind.ECHO, echo("a", fail_until=1))
        scripted_engine.add(JobKind.ECHO, echo("b"))
        scripted_engine.add(JobKind.ECHO, echo("c"))

        await scripted_engine.wait_idle()

        assert work.calls == [("a", 1), ("b", 1), ("c", 1), ("a", 2)]

    async def test_exhausted_job_fails(self, scripted_engine: QueueEngine):
        """FAILED only after the final attempt fails."""
        job = scripted_engine.add(JobKind.ECHO, echo("a", fail_until=5), max_attempts=2)
        await scripted_engine.wait_idle()

        failed = scripted_engine.get_job(job.id)
        assert failed.status == JobStatus.FAILED
        assert failed.attempts == 2
        assert failed.last_error == "attempt 2 failed"

    async def test_success_on_last_attempt(self, scripted_engine: QueueEngine):
        job = scripted_engine.add(JobKind.ECHO, echo("a", fail_until=2), max_attempts=3)
        await scripted_engine.wait_idle()

        done = scripted_engine.get_job(job.id)
        assert done.status == JobStatus.COMPLETED
        assert done.attempts == 3

    async def test_work_exception_counts_as_failed_attempt(
        self,
        scripted_engine: QueueEngine,
        work: ScriptedWork,
    ):
        """A raising work step fails the attempt and the loop keeps going."""
        bad = scripted_engine.add(JobKind.ECHO, echo("bad", fail_until=9, **{"raise": True}), max_attempts=1)
        good = scripted_engine.add(JobKind.ECHO, echo("good"))

        await scripted_engine.wait_idle()

        assert scripted_engine.get_job(bad.id).status == JobStatus.FAILED
        assert scripted_engine.get_job(bad.id).last_error == "boom 1"
        assert scripted_engine.get_job(good.id).status == JobStatus.COMPLETED

    async def test_single_attempt_at_a_time(self):
        work = ScriptedWork(delay=0.01)
        engine = QueueEngine(work, inter_job_pause=0)
        await engine.start()

        for i in range(5):
            engine.add(JobKind.ECHO, echo(str(i), fail_until=1))
        await engine.wait_idle()

        assert work.max_active == 1
        assert len(work.calls) == 10
        await engine.stop()

    async def test_default_handler_registry(self, engine: QueueEngine, sample_form):
        """Without an explicit work step the registered handler runs."""
        job = engine.add(JobKind.FORM_SUBMISSION, sample_form)
        await engine.wait_idle()

        assert engine.get_job(job.id).status == JobStatus.COMPLETED


class TestQueries:
    """Tests for stats, snapshots and retention."""

    async def test_stats_sum_to_total(self):
        work = ScriptedWork(delay=0.02)
        engine = QueueEngine(work, inter_job_pause=0)
        await engine.start()

        for i in range(4):
            engine.add(JobKind.ECHO, echo(str(i)))
        await asyncio.sleep(0.03)

        stats = engine.get_stats()
        assert stats.total == 4
        assert stats.waiting + stats.processing + stats.completed + stats.failed == stats.total
        assert stats.processing <= 1

        await engine.wait_idle()
        assert engine.get_stats().completed == 4
        await engine.stop()

    async def test_snapshot_is_detached(self, scripted_engine: QueueEngine):
        job = scripted_engine.add(JobKind.ECHO, echo("a"))
        job.payload["name"] = "mutated"
        job.status = JobStatus.FAILED

        await scripted_engine.wait_idle()

        stored = scripted_engine.get_job(job.id)
        assert stored.payload["name"] == "a"
        assert stored.status == JobStatus.COMPLETED

    async def test_terminal_jobs_expire(self, work: ScriptedWork):
        engine = QueueEngine(
            work,
            inter_job_pause=0,
            completed_retention=0.05,
            failed_retention=0.1,
        )
        await engine.start()

        ok = engine.add(JobKind.ECHO, echo("ok"))
        bad = engine.add(JobKind.ECHO, echo("bad", fail_until=1), max_attempts=1)
        await engine.wait_idle()

        await asyncio.sleep(0.07)
        assert engine.get_job(ok.id) is None
        assert engine.get_job(bad.id) is not None

        await asyncio.sleep(0.1)
        assert engine.get_job(bad.id) is None
        assert engine.get_stats().total == 0
        await engine.stop()

    async def test_unknown_id(self, scripted_engine: QueueEngine):
        assert scripted_engine.get_job("does-not-exist") is None


class TestEvents:
    """Tests for job event delivery."""

    async def test_event_sequence_for_retried_job(self, scripted_engine: QueueEngine):
        events: list[JobEvent] = []
        scripted_engine.subscribe(events.append)

        scripted_engine.add(JobKind.ECHO, echo("a", fail_until=1))
        await scripted_engine.wait_idle()

        assert [e.event_type for e in events] == [
            EVENT_JOB_CREATED,
            EVENT_JOB_STARTED,
            EVENT_JOB_RETRIED,
            EVENT_JOB_STARTED,
            EVENT_JOB_COMPLETED,
        ]

    async def test_failed_event(self, scripted_engine: QueueEngine):
        events: list[JobEvent] = []
        scripted_engine.subscribe(events.append)

        scripted_engine.add(JobKind.ECHO, echo("a", fail_until=1), max_attempts=1)
        await scripted_engine.wait_idle()

        assert events[-1].event_type == EVENT_JOB_FAILED
        assert events[-1].data["will_retry"] is False

    async def test_failing_listener_does_not_break_engine(self, scripted_engine: QueueEngine):
        def broken(event: JobEvent) -> None:
            raise RuntimeError("listener down")

        async def broken_async(event: JobEvent) -> None:
            raise RuntimeError("async listener down")

        scripted_engine.subscribe(broken)
        scripted_engine.subscribe(broken_async)

        job = scripted_engine.add(JobKind.ECHO, echo("a"))
        await scripted_engine.wait_idle()

        assert scripted_engine.get_job(job.id).status == JobStatus.COMPLETED

    async def test_unsubscribe(self, scripted_engine: QueueEngine):
        events: list[JobEvent] = []
        unsubscribe = scripted_engine.subscribe(events.append)
        unsubscribe()

        scripted_engine.add(JobKind.ECHO, echo("a"))
        await scripted_engine.wait_idle()

        assert events == []


class TestShutdown:
    """Tests for stopping the engine."""

    async def test_stop_waits_for_current_attempt(self):
        work = ScriptedWork(delay=0.05)
        engine = QueueEngine(work, inter_job_pause=0)
        await engine.start()

        job = engine.add(JobKind.ECHO, echo("a"))
        await asyncio.sleep(0.01)
        await engine.stop()

        assert engine.get_job(job.id).status == JobStatus.COMPLETED

    async def test_stop_cancels_after_timeout(self):
        work = ScriptedWork(delay=5)
        engine = QueueEngine(work, inter_job_pause=0, shutdown_timeout=0.05)
        await engine.start()

        engine.add(JobKind.ECHO, echo("slow"))
        await asyncio.sleep(0.01)
        await engine.stop()

        assert not engine.is_processing

    async def test_cancelled_job_resumes_after_restart(self):
        work = ScriptedWork(delay=5)
        engine = QueueEngine(work, inter_job_pause=0, shutdown_timeout=0.05)
        await engine.start()

        job = engine.add(JobKind.ECHO, echo("slow"))
        await asyncio.sleep(0.01)
        await engine.stop()

        interrupted = engine.get_job(job.id)
        assert interrupted.status == JobStatus.WAITING
        assert interrupted.last_error == "Interrupted by shutdown"
        assert engine.get_stats().processing == 0

        work.delay = 0
        await engine.start()
        await engine.wait_idle()

        finished = engine.get_job(job.id)
        assert finished.status == JobStatus.COMPLETED
        assert finished.attempts == 2
        await engine.stop()

    async def test_cancelled_last_attempt_fails(self):
        work = ScriptedWork(delay=5)
        engine = QueueEngine(work, inter_job_pause=0, shutdown_timeout=0.05)
        await engine.start()

        job = engine.add(JobKind.ECHO, echo("slow"), max_attempts=1)
        await asyncio.sleep(0.01)
        await engine.stop()

        stats = engine.get_stats()
        assert engine.get_job(job.id).status == JobStatus.FAILED
        assert stats.processing == 0
        assert stats.failed == 1

    async def test_retention_resumes_after_restart(self, work: ScriptedWork):
        engine = QueueEngine(work, inter_job_pause=0, completed_retention=0.05)
        await engine.start()

        job = engine.add(JobKind.ECHO, echo("a"))
        await engine.wait_idle()
        await engine.stop()

        assert engine.get_job(job.id).status == JobStatus.COMPLETED

        await engine.start()
        await asyncio.sleep(0.2)

        assert engine.get_job(job.id) is None
        assert engine.get_stats().total == 0
        await engine.stop()


class TestJobRecord:
    """Tests for the job state machine."""

    def test_processing_counts_attempt(self):
        job = JobRecord(kind=JobKind.ECHO, payload={})
        job.transition(JobStatus.PROCESSING)

        assert job.attempts == 1
        assert job.status == JobStatus.PROCESSING

    @pytest.mark.parametrize(
        "target",
        [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.WAITING],
    )
    def test_waiting_only_moves_to_processing(self, target: JobStatus):
        job = JobRecord(kind=JobKind.ECHO, payload={})

        with pytest.raises(InvalidTransitionError):
            job.transition(target)

    def test_terminal_states_are_final(self):
        job = JobRecord(kind=JobKind.ECHO, payload={})
        job.transition(JobStatus.PROCESSING)
        job.transition(JobStatus.COMPLETED)

        assert job.is_terminal
        with pytest.raises(InvalidTransitionError):
            job.transition(JobStatus.WAITING)
