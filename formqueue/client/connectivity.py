"""
Connectivity detection for the offline client.

Combines a cached platform "online" flag with an active reachability probe.
The flag is trusted when it says offline; when it says online the probe
decides, which catches captive portals and flaky links.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

from formqueue.client.transport import QueueClient
from formqueue.config import get_settings

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], Awaitable[None] | None]


class ConnectivityMonitor:
    """
    Online/offline detector.

    ``set_online`` feeds the cached flag (from OS network events, a UI, or
    failed requests); listeners registered with ``on_change`` hear every flag
    flip.
    """

    def __init__(
        self,
        client: QueueClient,
        probe_path: str | None = None,
        probe_timeout: float | None = None,
        online: bool = True,
    ):
        settings = get_settings()
        self._client = client
        self.probe_path = probe_path or settings.probe_path
        self.probe_timeout = probe_timeout or settings.probe_timeout_seconds
        self._online_flag = online
        self._listeners: list[ConnectivityListener] = []

    @property
    def online_flag(self) -> bool:
        """Cached platform flag. Fast, possibly stale."""
        return self._online_flag

    def on_change(self, listener: ConnectivityListener) -> Callable[[], None]:
        """
        Register a listener called with the new flag value on every flip.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def set_online(self, online: bool) -> None:
        """Update the cached flag and notify listeners if it flipped."""
        if online == self._online_flag:
            return

        self._online_flag = online
        logger.info("Connectivity changed", extra={"online": online})

        for listener in list(self._listeners):
            try:
                result = listener(online)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Connectivity listener failed")

    async def is_online(self) -> bool:
        """
        Decide whether the queue server is reachable right now.

        Never takes longer than the probe timeout.
        """
        if not self._online_flag:
            return False

        try:
            reachable = await asyncio.wait_for(
                self._client.probe(self.probe_path, self.probe_timeout),
                self.probe_timeout,
            )
        except TimeoutError:
            reachable = False

        if not reachable:
            logger.info("Reachability probe failed, treating as offline")
        return reachable
