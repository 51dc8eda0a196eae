"""
Integration tests for the API endpoints.
"""

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient

from formqueue.api.main import create_app
from formqueue.client.transport import QueueClient
from formqueue.constants import FORM_FIELDS_REQUIRED_MESSAGE, QUEUE_TYPE, JobStatus
from formqueue.engine.queue import QueueEngine


class TestSubmitAPI:
    """Integration tests for form intake."""

    async def test_submit_success(self, client: AsyncClient, sample_form):
        response = await client.post("/api/submit", json=sample_form)

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Form submitted successfully"

        job = body["job"]
        assert job["type"] == "form-submission"
        assert job["status"] == JobStatus.WAITING
        assert job["attempts"] == 0
        assert job["maxAttempts"] == 3
        assert job["data"]["email"] == sample_form["email"]
        assert "submittedAt" in job["data"]

    @pytest.mark.parametrize("missing", ["name", "email", "message"])
    async def test_submit_missing_field(self, client: AsyncClient, engine: QueueEngine, sample_form, missing):
        form = {k: v for k, v in sample_form.items() if k != missing}

        response = await client.post("/api/submit", json=form)

        assert response.status_code == 400
        assert response.json()["error"] == FORM_FIELDS_REQUIRED_MESSAGE
        assert engine.get_stats().total == 0

    async def test_submit_empty_field(self, client: AsyncClient, sample_form):
        response = await client.post("/api/submit", json={**sample_form, "name": ""})
        assert response.status_code == 400

    async def test_job_reaches_completed(self, queue_client: QueueClient, sample_form):
        created = await queue_client.submit(sample_form)

        job = await queue_client.wait_for_job(created.id, interval=0.01, timeout=5)

        assert job is not None
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 1

    async def test_submit_while_engine_stopped(self, client: AsyncClient, engine: QueueEngine, sample_form):
        await engine.stop()

        response = await client.post("/api/submit", json=sample_form)

        assert response.status_code == 503
        assert "error" in response.json()


class TestJobsAPI:
    """Integration tests for generic intake, status and stats."""

    async def test_create_job(self, client: AsyncClient):
        response = await client.post(
            "/api/jobs",
            json={"kind": "echo", "payload": {"hello": "world"}, "maxAttempts": 5},
        )

        assert response.status_code == 201
        job = response.json()["job"]
        assert job["type"] == "echo"
        assert job["maxAttempts"] == 5

    async def test_create_job_rejects_bad_attempts(self, client: AsyncClient):
        response = await client.post(
            "/api/jobs",
            json={"kind": "echo", "payload": {}, "maxAttempts": 11},
        )
        assert response.status_code == 422

    async def test_create_job_unknown_kind(self, client: AsyncClient):
        response = await client.post("/api/jobs", json={"kind": "nope", "payload": {}})
        assert response.status_code == 400

    async def test_get_job(self, client: AsyncClient, sample_form):
        created = (await client.post("/api/submit", json=sample_form)).json()["job"]

        response = await client.get(f"/api/job/{created['id']}")

        assert response.status_code == 200
        assert response.json()["id"] == created["id"]

    async def test_get_job_not_found(self, client: AsyncClient):
        response = await client.get("/api/job/does-not-exist")

        assert response.status_code == 404
        assert response.json() == {"error": "Job not found"}

    async def test_queue_stats(self, client: AsyncClient, engine: QueueEngine, sample_form):
        for _ in range(3):
            await client.post("/api/submit", json=sample_form)
        await engine.wait_idle()

        response = await client.get("/api/queue-stats")

        assert response.status_code == 200
        body = response.json()
        assert body["queueType"] == QUEUE_TYPE
        assert body["redisRequired"] is False
        assert "timestamp" in body

        stats = body["stats"]
        assert stats["total"] == 3
        assert stats["completed"] == 3
        assert stats["waiting"] + stats["processing"] + stats["completed"] + stats["failed"] == stats["total"]


class TestHealthAPI:
    """Integration tests for health endpoints."""

    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["engine"] == "running"

    async def test_live_head(self, client: AsyncClient):
        response = await client.head("/live")
        assert response.status_code == 200

    async def test_metrics(self, client: AsyncClient, sample_form):
        await client.post("/api/submit", json=sample_form)

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "jobs_submitted_total" in response.text


def test_websocket_receives_job_events(sample_form):
    """Lifespan wires engine events to connected WebSocket clients."""
    with TestClient(create_app()) as test_client:
        with test_client.websocket_connect("/ws/jobs") as websocket:
            websocket.send_json({"action": "ping"})
            assert websocket.receive_json() == {"type": "pong"}

            response = test_client.post("/api/submit", json=sample_form)
            job_id = response.json()["job"]["id"]

            message = websocket.receive_json()
            assert message["type"] == "job.created"
            assert message["payload"]["job_id"] == job_id
