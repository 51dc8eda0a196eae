"""
Offline-first client module.
Contains the queue client, connectivity monitor, offline store,
submission router and reconciliation driver.
"""

from formqueue.client.connectivity import ConnectivityMonitor
from formqueue.client.notifications import NotificationChannel
from formqueue.client.reconciler import ReconcileReport, ReconciliationDriver, TriggerSource
from formqueue.client.router import SubmissionRouter
from formqueue.client.store import (
    MemoryOfflineStore,
    OfflineStore,
    SqlOfflineStore,
    create_store,
)
from formqueue.client.transport import QueueClient

__all__ = [
    "ConnectivityMonitor",
    "MemoryOfflineStore",
    "NotificationChannel",
    "OfflineStore",
    "QueueClient",
    "ReconcileReport",
    "ReconciliationDriver",
    "SqlOfflineStore",
    "SubmissionRouter",
    "TriggerSource",
    "create_store",
]
