"""
Reconciliation of offline records with the queue server.

Many producers (reconnect, visibility, periodic timer, manual action,
peer messages) request a pass; a single consumer task runs them. Inside a
pass each record is claimed in the store before it is resubmitted, so a
record is never on the wire twice at once, even with several drivers
sharing one store.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from formqueue.client.connectivity import ConnectivityMonitor
from formqueue.client.notifications import NotificationChannel
from formqueue.client.router import SubmissionRouter
from formqueue.client.store import OfflineStore
from formqueue.client.transport import QueueClient
from formqueue.config import get_settings
from formqueue.constants import (
    PEER_PROCESS_OFFLINE_FORMS,
    PEER_STORE_OFFLINE_FORM,
    PEER_SYNC_OFFLINE_JOBS,
    SPAN_RECONCILE,
)
from formqueue.engine.handlers import validate_payload
from formqueue.errors import JobValidationError, ServerError, TransportError
from formqueue.observability.metrics import get_metrics
from formqueue.observability.tracing import get_tracer
from formqueue.types.events import OfflineNotification
from formqueue.types.job import JobView
from formqueue.types.offline import OfflineRecord

logger = logging.getLogger(__name__)


class TriggerSource(StrEnum):
    """Why a reconciliation pass was requested."""

    RECONNECT = "reconnect"
    VISIBILITY = "visibility"
    PERIODIC = "periodic"
    MANUAL = "manual"
    PEER_MESSAGE = "peer_message"
    STARTUP = "startup"


@dataclass
class ReconcileReport:
    """Outcome counts of one reconciliation pass."""

    synced: int = 0
    failed: int = 0
    retried: int = 0
    skipped: int = 0

    @property
    def processed(self) -> int:
        return self.synced + self.failed + self.retried


class ReconciliationDriver:
    """
    Drains the offline store against the queue server.

    - ``trigger`` is the non-blocking entry point for every producer
    - ``sync_now`` runs a pass, or joins the one already running
    - ``start`` / ``stop`` manage the consumer and the periodic timer
    """

    def __init__(
        self,
        client: QueueClient,
        store: OfflineStore,
        notifications: NotificationChannel,
        monitor: ConnectivityMonitor,
        router: SubmissionRouter | None = None,
        interval: float | None = None,
        record_pause: float | None = None,
        stale_after: float | None = None,
    ):
        """
        Args:
            client: Queue server client used for resubmission.
            store: Offline store to drain.
            notifications: Channel for synced/failed notifications.
            monitor: Connectivity monitor; flips to online trigger a pass.
            router: Used to store records handed over by peer contexts.
            interval: Seconds between periodic triggers.
            record_pause: Seconds to pause between two resubmissions.
            stale_after: Seconds after which another claimer's in-flight
                marker is considered abandoned.
        """
        settings = get_settings()

        self._client = client
        self._store = store
        self._notifications = notifications
        self._monitor = monitor
        self._router = router

        self.interval = interval if interval is not None else settings.reconcile_interval_seconds
        self.record_pause = (
            record_pause if record_pause is not None else settings.record_pause_seconds
        )
        self.stale_after = (
            stale_after if stale_after is not None else settings.inflight_stale_seconds
        )

        self._triggers: asyncio.Queue[TriggerSource] = asyncio.Queue()
        self._current: asyncio.Task | None = None
        self._consumer: asyncio.Task | None = None
        self._timer: asyncio.Task | None = None
        self._remove_listener = None
        self._metrics = get_metrics()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the trigger consumer and the periodic timer."""
        logger.info(
            "Reconciliation driver starting",
            extra={"interval": self.interval},
        )
        self._remove_listener = self._monitor.on_change(self._on_connectivity_change)
        self._consumer = asyncio.create_task(self._consume(), name="reconcile-consumer")
        self._timer = asyncio.create_task(self._periodic(), name="reconcile-timer")
        self.trigger(TriggerSource.STARTUP)

    async def stop(self) -> None:
        """Stop producing and consuming triggers; let a running pass finish."""
        logger.info("Reconciliation driver stopping")

        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None

        for task in (self._timer, self._consumer):
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._timer = None
        self._consumer = None

        if self._current is not None and not self._current.done():
            await asyncio.gather(self._current, return_exceptions=True)

        logger.info("Reconciliation driver stopped")

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def trigger(self, source: TriggerSource) -> None:
        """Request a pass. Never blocks; queued requests are coalesced."""
        self._triggers.put_nowait(source)

    def notify_visibility(self, visible: bool) -> None:
        """A page or tab became visible or hidden."""
        if visible and self._monitor.online_flag:
            self.trigger(TriggerSource.VISIBILITY)

    async def _on_connectivity_change(self, online: bool) -> None:
        if online:
            self.trigger(TriggerSource.RECONNECT)

    async def _periodic(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                if self._monitor.online_flag and await self._store.count() > 0:
                    self.trigger(TriggerSource.PERIODIC)
            except Exception:
                logger.exception("Periodic reconciliation check failed")

    async def handle_peer_message(self, message: dict[str, Any]) -> None:
        """
        Handle a message from another context sharing this store.

        ``SYNC_OFFLINE_JOBS`` / ``PROCESS_OFFLINE_FORMS`` request a pass;
        ``STORE_OFFLINE_FORM`` hands over a submission to keep offline.
        """
        message_type = message.get("type")

        if message_type in (PEER_SYNC_OFFLINE_JOBS, PEER_PROCESS_OFFLINE_FORMS):
            self.trigger(TriggerSource.PEER_MESSAGE)

        elif message_type == PEER_STORE_OFFLINE_FORM:
            if self._router is None:
                logger.warning("Peer store request ignored, no router configured")
                return
            data = message.get("data") or {}
            timestamp = data.get("timestamp")
            try:
                await self._router.store_offline(
                    validate_payload(self._router.kind, data.get("formData")),
                    record_id=data.get("jobId"),
                    timestamp=(
                        datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
                        if isinstance(timestamp, (int, float))
                        else None
                    ),
                )
            except JobValidationError as e:
                logger.warning(f"Peer store request rejected: {e}")

        else:
            logger.warning("Unknown peer message", extra={"message_type": message_type})

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    async def _consume(self) -> None:
        while True:
            source = await self._triggers.get()

            # Coalesce everything queued meanwhile into this pass
            coalesced = 0
            while not self._triggers.empty():
                self._triggers.get_nowait()
                coalesced += 1

            if not self._monitor.online_flag:
                logger.debug("Offline, skipping reconciliation", extra={"source": source})
                continue

            try:
                report = await self.sync_now(source)
            except Exception:
                logger.exception("Reconciliation pass failed", extra={"source": source})
                continue

            if report.processed or report.skipped:
                logger.info(
                    "Reconciliation pass finished",
                    extra={
                        "source": source,
                        "coalesced": coalesced,
                        "synced": report.synced,
                        "failed": report.failed,
                        "retried": report.retried,
                        "skipped": report.skipped,
                    },
                )

    async def sync_now(self, source: TriggerSource = TriggerSource.MANUAL) -> ReconcileReport:
        """
        Run a reconciliation pass now.

        If a pass is already running, wait for it and return its report
        instead of starting a second one.
        """
        if self._current is None or self._current.done():
            self._current = asyncio.create_task(self._run_pass(source))
        return await asyncio.shield(self._current)

    async def _run_pass(self, source: TriggerSource) -> ReconcileReport:
        report = ReconcileReport()

        records = await self._store.list_records()
        if not records:
            return report

        self._metrics.record_reconcile_pass(source)

        with get_tracer().start_as_current_span(SPAN_RECONCILE) as span:
            span.set_attribute("source", source.value)
            span.set_attribute("records", len(records))

            first = True
            for record in records:
                claimed = await self._store.claim(record.id, self.stale_after)
                if claimed is None:
                    logger.debug(
                        "Record already in flight, skipping",
                        extra={"offline_job_id": record.id},
                    )
                    report.skipped += 1
                    continue

                if not first and self.record_pause > 0:
                    await asyncio.sleep(self.record_pause)
                first = False

                await self._reconcile_record(claimed, report)

            span.set_attribute("synced", report.synced)

        return report

    async def _reconcile_record(self, record: OfflineRecord, report: ReconcileReport) -> None:
        """Resubmit one claimed record and settle it in the store."""
        if record.is_exhausted:
            await self._discard(record, report)
            return

        try:
            job = await self._client.submit_job(record.type, record.data)
        except (TransportError, ServerError) as e:
            record.attempts += 1
            logger.warning(
                "Resubmission failed",
                extra={
                    "offline_job_id": record.id,
                    "attempts": record.attempts,
                    "max_attempts": record.max_attempts,
                    "error": str(e),
                },
            )
            if record.is_exhausted:
                await self._discard(record, report)
            else:
                await self._store.release(record)
                report.retried += 1
            return
        except Exception:
            await self._store.release(record)
            raise

        try:
            await self._store.remove(record.id)
        except Exception:
            logger.warning(
                "Removing synced record failed, retrying",
                exc_info=True,
                extra={"offline_job_id": record.id, "job_id": job.id},
            )
            try:
                await self._store.remove(record.id)
            finally:
                await self._settle_synced(record, job, report)
            return

        await self._settle_synced(record, job, report)

    async def _settle_synced(self, record: OfflineRecord, job: JobView, report: ReconcileReport) -> None:
        report.synced += 1

        logger.info(
            "Offline record synced",
            extra={"offline_job_id": record.id, "job_id": job.id},
        )
        await self._notifications.publish(OfflineNotification.synced(record, job))

    async def _discard(self, record: OfflineRecord, report: ReconcileReport) -> None:
        await self._store.remove(record.id)
        report.failed += 1

        logger.error(
            "Offline record exhausted its attempts, discarding",
            extra={"offline_job_id": record.id, "attempts": record.attempts},
        )
        await self._notifications.publish(OfflineNotification.failed(record))
