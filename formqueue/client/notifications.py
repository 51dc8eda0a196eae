"""
Observer channel for offline notifications.

The router and the reconciliation driver publish ``OfflineNotification``s
here; UIs, peers and tests subscribe. Delivery is at-least-once from the
consumer's point of view, so subscribers must treat repeated notifications
for the same offline id as no-ops.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable

from formqueue.constants import OFFLINE_FORM_FAILED, OFFLINE_FORM_STORED, OFFLINE_FORM_SYNCED
from formqueue.observability.metrics import get_metrics
from formqueue.types.events import OfflineNotification

logger = logging.getLogger(__name__)

NotificationSubscriber = Callable[[OfflineNotification], Awaitable[None] | None]

_OUTCOMES = {
    OFFLINE_FORM_STORED: "stored",
    OFFLINE_FORM_SYNCED: "synced",
    OFFLINE_FORM_FAILED: "failed",
}


class NotificationChannel:
    """Explicit publish/subscribe channel, no global bus."""

    def __init__(self):
        self._subscribers: list[NotificationSubscriber] = []
        self._metrics = get_metrics()

    def subscribe(self, subscriber: NotificationSubscriber) -> Callable[[], None]:
        """
        Register a subscriber.

        Returns:
            A callable that removes the subscriber.
        """
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    async def publish(self, notification: OfflineNotification) -> None:
        """
        Deliver a notification to every subscriber.

        A failing subscriber is logged and does not stop delivery to the rest.
        """
        outcome = _OUTCOMES.get(notification.type)
        if outcome:
            self._metrics.record_offline(outcome)

        logger.info(
            "Offline notification",
            extra={
                "notification": notification.type,
                "offline_job_id": notification.offline_job_id,
            },
        )

        for subscriber in list(self._subscribers):
            try:
                result = subscriber(notification)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Notification subscriber failed",
                    extra={"notification": notification.type},
                )
