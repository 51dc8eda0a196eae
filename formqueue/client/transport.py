"""
HTTP client for the queue server's intake, status and stats contracts.
"""

import asyncio
import logging
import time
from typing import Any

import httpx

from formqueue.config import get_settings
from formqueue.constants import SUBMIT_PATH, JobKind
from formqueue.errors import ServerError, SubmissionRejected, TransportError
from formqueue.types.job import JobView, QueueStats

logger = logging.getLogger(__name__)

_REJECTED_STATUSES = frozenset({400, 422})


class QueueClient:
    """
    Async client for the queue server.

    Wraps an ``httpx.AsyncClient``; the client can be injected (tests use an
    ``ASGITransport`` bound to the app).

    Raises from every request method:
        TransportError: Network failure or timeout.
        SubmissionRejected: The server rejected the request as invalid.
        ServerError: Any other non-success status.
    """

    def __init__(
        self,
        base_url: str | None = None,
        http: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        settings = get_settings()
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            base_url=base_url or settings.server_url,
            timeout=timeout or settings.request_timeout_seconds,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "QueueClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e!r}") from e

        if response.is_success:
            return response

        detail = _error_detail(response)
        if response.status_code in _REJECTED_STATUSES:
            raise SubmissionRejected(response.status_code, detail)
        raise ServerError(response.status_code, detail)

    async def submit(self, form: dict[str, Any]) -> JobView:
        """
        Submit a form to the intake endpoint.

        Args:
            form: Form fields (name, email, message).

        Returns:
            The job created by the server.
        """
        response = await self._request("POST", SUBMIT_PATH, json=form)
        return JobView.model_validate(response.json()["job"])

    async def submit_job(
        self,
        kind: str,
        payload: dict[str, Any],
        max_attempts: int | None = None,
    ) -> JobView:
        """Submit through the generic intake contract."""
        if kind == JobKind.FORM_SUBMISSION:
            return await self.submit(payload)

        body: dict[str, Any] = {"kind": kind, "payload": payload}
        if max_attempts is not None:
            body["maxAttempts"] = max_attempts
        response = await self._request("POST", "/api/jobs", json=body)
        return JobView.model_validate(response.json()["job"])

    async def get_job(self, job_id: str) -> JobView | None:
        """
        Get the current state of a job.

        Returns:
            The job, or None if the server no longer (or never) knew it.
        """
        try:
            response = await self._request("GET", f"/api/job/{job_id}")
        except ServerError as e:
            if e.status_code == 404:
                return None
            raise
        return JobView.model_validate(response.json())

    async def get_stats(self) -> QueueStats:
        """Get queue statistics."""
        response = await self._request("GET", "/api/queue-stats")
        return QueueStats.model_validate(response.json()["stats"])

    async def probe(self, path: str, timeout: float) -> bool:
        """
        Cheap reachability check.

        Returns:
            True if a HEAD request to ``path`` succeeded within ``timeout``.
        """
        try:
            response = await self._http.head(
                path,
                timeout=timeout,
                headers={"Cache-Control": "no-cache"},
            )
        except httpx.HTTPError as e:
            logger.debug(f"Reachability probe failed: {e!r}")
            return False
        return response.is_success

    async def wait_for_job(
        self,
        job_id: str,
        interval: float = 1.0,
        timeout: float = 60.0,
    ) -> JobView | None:
        """
        Poll a job until it is terminal or gone.

        Returns:
            The last observed state; None if the job is unknown to the server.

        Raises:
            TimeoutError: The job is still active after ``timeout`` seconds.
        """
        deadline = time.monotonic() + timeout
        while True:
            job = await self.get_job(job_id)
            if job is None or job.is_terminal:
                return job
            if time.monotonic() >= deadline:
                raise TimeoutError(f"Job {job_id} still {job.status} after {timeout}s")
            await asyncio.sleep(interval)


def _error_detail(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return response.text or None
    if isinstance(body, dict):
        detail = body.get("error") or body.get("detail")
        return str(detail) if detail else None
    return None
