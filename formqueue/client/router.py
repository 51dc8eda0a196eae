"""
Submission routing: deliver directly when the server is reachable,
otherwise keep the submission in the offline store.
"""

import logging
from datetime import datetime
from typing import Any

from formqueue.client.connectivity import ConnectivityMonitor
from formqueue.client.notifications import NotificationChannel
from formqueue.client.store import OfflineStore
from formqueue.client.transport import QueueClient
from formqueue.constants import OFFLINE_STORED_MESSAGE, SPAN_ROUTE_SUBMISSION, JobKind
from formqueue.engine.handlers import validate_payload
from formqueue.errors import JobValidationError, ServerError, SubmissionRejected, TransportError
from formqueue.observability.tracing import get_tracer
from formqueue.types.api import SubmissionAck
from formqueue.types.events import OfflineNotification
from formqueue.types.offline import OfflineRecord

logger = logging.getLogger(__name__)


class SubmissionRouter:
    """
    Routes submissions to the queue server or to the offline store.

    Every path returns a ``SubmissionAck``; the only exception raised to the
    caller is ``JobValidationError`` for a structurally invalid submission.
    """

    def __init__(
        self,
        client: QueueClient,
        monitor: ConnectivityMonitor,
        store: OfflineStore,
        notifications: NotificationChannel,
        kind: str = JobKind.FORM_SUBMISSION,
        max_attempts: int | None = None,
    ):
        self._client = client
        self._monitor = monitor
        self._store = store
        self._notifications = notifications
        self.kind = kind
        self.max_attempts = max_attempts

    async def submit(self, form: dict[str, Any]) -> SubmissionAck:
        """
        Submit a unit of work.

        Args:
            form: Payload for the configured kind.

        Returns:
            Acknowledgment with the server job, or the offline record and
            ``offline=True``.

        Raises:
            JobValidationError: The payload is invalid; nothing is sent or stored.
        """
        data = validate_payload(self.kind, form)

        with get_tracer().start_as_current_span(SPAN_ROUTE_SUBMISSION) as span:
            online = await self._monitor.is_online()
            span.set_attribute("online", online)

            if online:
                try:
                    job = await self._client.submit_job(self.kind, data)
                except SubmissionRejected as e:
                    raise JobValidationError(e.detail or str(e)) from e
                except (TransportError, ServerError) as e:
                    logger.warning(
                        "Direct submission failed, storing offline",
                        extra={"error": str(e)},
                    )
                else:
                    span.set_attribute("job_id", job.id)
                    return SubmissionAck(
                        message="Form submitted successfully",
                        job=job,
                        offline=False,
                    )

            ack = await self.store_offline(data)
            span.set_attribute("offline_job_id", ack.job.id)
            return ack

    async def store_offline(
        self,
        data: dict[str, Any],
        record_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> SubmissionAck:
        """
        Persist a submission for later reconciliation.

        Args:
            data: Validated payload.
            record_id: Id chosen by a peer context; a fresh id otherwise.
            timestamp: Creation time chosen by a peer context.

        Returns:
            Acknowledgment flagged ``offline=True``.
        """
        fields: dict[str, Any] = {"type": self.kind, "data": data}
        if record_id:
            fields["id"] = record_id
        if timestamp:
            fields["timestamp"] = timestamp
        if self.max_attempts:
            fields["max_attempts"] = self.max_attempts

        record = OfflineRecord(**fields)
        await self._store.add(record)

        logger.info("Submission stored offline", extra={"offline_job_id": record.id})
        await self._notifications.publish(OfflineNotification.stored(record))

        return SubmissionAck(message=OFFLINE_STORED_MESSAGE, job=record, offline=True)
