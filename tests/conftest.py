"""
Pytest configuration and shared fixtures.
"""

import asyncio
import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any

# Fast, deterministic work timings. Must be set BEFORE any formqueue import
# reads the cached settings.
os.environ["WORK_MIN_SECONDS"] = "0.01"
os.environ["WORK_MAX_SECONDS"] = "0.02"
os.environ["WORK_EXTERNAL_CALL_SECONDS"] = "0"
os.environ["WORK_FAILURE_RATE"] = "0"
os.environ["INTER_JOB_PAUSE_SECONDS"] = "0"
os.environ["RECORD_PAUSE_SECONDS"] = "0"
os.environ["OFFLINE_STORE_URL"] = "memory://"
os.environ["OTEL_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["LOG_FORMAT"] = "console"

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from formqueue.api.main import create_app
from formqueue.client.connectivity import ConnectivityMonitor
from formqueue.client.notifications import NotificationChannel
from formqueue.client.store import MemoryOfflineStore, OfflineStore, SqlOfflineStore
from formqueue.client.transport import QueueClient
from formqueue.constants import JobStatus
from formqueue.engine.queue import QueueEngine
from formqueue.types.events import OfflineNotification
from formqueue.types.job import JobView, generate_job_id, utcnow


class FakeQueueClient:
    """
    Stand-in for ``QueueClient`` with scripted outcomes.

    ``failures`` are raised in order by ``submit_job``; once exhausted,
    submissions succeed.
    """

    def __init__(self):
        self.reachable = True
        self.failures: list[Exception] = []
        self.delay = 0.0
        self.calls = 0
        self.closed = False
        self.submitted: list[tuple[str, dict[str, Any]]] = []

    async def probe(self, path: str, timeout: float) -> bool:
        return self.reachable

    async def submit_job(
        self,
        kind: str,
        payload: dict[str, Any],
        max_attempts: int | None = None,
    ) -> JobView:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)

        self.submitted.append((kind, payload))
        return JobView(
            id=generate_job_id(),
            type=kind,
            status=JobStatus.WAITING,
            attempts=0,
            max_attempts=max_attempts or 3,
            timestamp=utcnow(),
            data=payload,
        )

    async def submit(self, form: dict[str, Any]) -> JobView:
        return await self.submit_job("form-submission", form)

    async def aclose(self) -> None:
        self.closed = True


async def wait_until(
    predicate: Callable[[], Awaitable[bool]],
    timeout: float = 2.0,
    interval: float = 0.01,
) -> None:
    """Poll ``predicate`` until it holds, failing the test on timeout."""
    async def poll() -> None:
        while not await predicate():
            await asyncio.sleep(interval)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def sample_form() -> dict[str, Any]:
    """A valid form submission."""
    return {
        "name": "Ada Lovelace",
        "email": "ada@example.com",
        "message": "Hello from the analytical engine",
    }


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[QueueEngine]:
    """A started queue engine using the handler registry."""
    queue_engine = QueueEngine(inter_job_pause=0)
    await queue_engine.start()
    yield queue_engine
    await queue_engine.stop()


@pytest.fixture
def app(engine: QueueEngine) -> FastAPI:
    """FastAPI app serving the test engine."""
    return create_app(engine)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def queue_client(client: AsyncClient) -> QueueClient:
    """QueueClient talking to the in-process app."""
    return QueueClient(http=client)


@pytest.fixture
def fake_client() -> FakeQueueClient:
    return FakeQueueClient()


@pytest.fixture
def memory_store() -> MemoryOfflineStore:
    return MemoryOfflineStore()


@pytest_asyncio.fixture
async def sql_store(tmp_path: Path) -> AsyncGenerator[SqlOfflineStore]:
    """SQLite-backed offline store in a temporary directory."""
    store = SqlOfflineStore(f"sqlite+aiosqlite:///{tmp_path / 'offline.db'}")
    await store.init()
    yield store
    await store.close()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request: pytest.FixtureRequest, tmp_path: Path) -> AsyncGenerator[OfflineStore]:
    """Run a test against every offline store implementation."""
    if request.param == "memory":
        offline_store: OfflineStore = MemoryOfflineStore()
    else:
        offline_store = SqlOfflineStore(f"sqlite+aiosqlite:///{tmp_path / 'shared.db'}")

    await offline_store.init()
    yield offline_store
    await offline_store.close()


@pytest.fixture
def notifications() -> NotificationChannel:
    return NotificationChannel()


@pytest.fixture
def received(notifications: NotificationChannel) -> list[OfflineNotification]:
    """Every notification published on the channel, in order."""
    collected: list[OfflineNotification] = []
    notifications.subscribe(collected.append)
    return collected


@pytest.fixture
def fake_monitor(fake_client: FakeQueueClient) -> ConnectivityMonitor:
    return ConnectivityMonitor(fake_client, probe_timeout=0.2)


@pytest.fixture(name="wait_until")
def wait_until_fixture() -> Callable[..., Awaitable[None]]:
    """Expose ``wait_until`` to tests."""
    return wait_until
