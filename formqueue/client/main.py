"""
Offline sync agent.

Long-running client process that owns an offline store and keeps it
drained against the queue server: it watches reachability, flips the
connectivity flag when it changes, and lets the reconciliation driver
resubmit whatever was stored while the server was unreachable.
"""

import asyncio
import logging
import signal

from formqueue.client.connectivity import ConnectivityMonitor
from formqueue.client.notifications import NotificationChannel
from formqueue.client.reconciler import ReconciliationDriver, TriggerSource
from formqueue.client.router import SubmissionRouter
from formqueue.client.store import OfflineStore, create_store
from formqueue.client.transport import QueueClient
from formqueue.config import get_settings
from formqueue.observability.logging import setup_logging
from formqueue.observability.tracing import setup_tracing

logger = logging.getLogger(__name__)


class SyncAgent:
    """
    Wires the client-side components together.

    Owns the queue client, connectivity monitor, offline store,
    notification channel, submission router and reconciliation driver.
    """

    def __init__(
        self,
        client: QueueClient | None = None,
        store: OfflineStore | None = None,
        watch_interval: float | None = None,
    ):
        """
        Args:
            client: Queue server client. Built from settings if omitted.
            store: Offline store. Built from ``offline_store_url`` if omitted.
            watch_interval: Seconds between reachability checks.
        """
        settings = get_settings()
        self.watch_interval = watch_interval or settings.probe_interval_seconds

        self.client = client or QueueClient()
        self.store = store or create_store()
        self.notifications = NotificationChannel()
        self.monitor = ConnectivityMonitor(self.client)
        self.router = SubmissionRouter(
            self.client,
            self.monitor,
            self.store,
            self.notifications,
        )
        self.driver = ReconciliationDriver(
            self.client,
            self.store,
            self.notifications,
            self.monitor,
            router=self.router,
        )
        self._running = False

    async def start(self) -> None:
        """Open the store and run until ``stop`` is called."""
        logger.info(
            "Sync agent starting",
            extra={"watch_interval": self.watch_interval},
        )
        await self.store.init()
        await self.check_connectivity()
        await self.driver.start()
        self._running = True

        try:
            while self._running:
                await asyncio.sleep(self.watch_interval)
                await self.check_connectivity()
        finally:
            await self.driver.stop()
            await self.store.close()
            await self.client.aclose()
            logger.info("Sync agent stopped")

    async def stop(self) -> None:
        """Ask the watch loop to exit."""
        logger.info("Sync agent stopping")
        self._running = False

    async def check_connectivity(self) -> bool:
        """
        Probe the server and feed the result into the connectivity flag.

        A flip to online triggers a reconciliation pass through the
        monitor's change listeners.
        """
        try:
            reachable = await asyncio.wait_for(
                self.client.probe(self.monitor.probe_path, self.monitor.probe_timeout),
                self.monitor.probe_timeout,
            )
        except TimeoutError:
            reachable = False

        await self.monitor.set_online(reachable)
        return reachable

    async def run_once(self) -> None:
        """Run a single reconciliation pass (for cron-style execution)."""
        await self.store.init()
        try:
            if await self.check_connectivity():
                report = await self.driver.sync_now(TriggerSource.MANUAL)
                logger.info(
                    "Sync finished",
                    extra={
                        "synced": report.synced,
                        "failed": report.failed,
                        "retried": report.retried,
                    },
                )
            else:
                logger.warning("Queue server unreachable, nothing synced")
        finally:
            await self.store.close()
            await self.client.aclose()


async def run_async() -> None:
    """Run the sync agent asynchronously."""
    setup_logging(component="sync-agent")
    setup_tracing()

    agent = SyncAgent()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(agent.stop())
        )

    await agent.start()


def run() -> None:
    """Run the sync agent."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
