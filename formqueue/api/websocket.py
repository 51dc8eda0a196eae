"""
Live job updates over WebSocket.

The hub subscribes to the queue engine's events and fans them out to
connected clients. A client sees every job until it narrows its feed with
``{"action": "subscribe", "job_id": ...}``.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from formqueue.types.events import JobEvent, WebSocketMessage

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class JobFeed:
    """One connected client and the jobs it follows."""

    websocket: WebSocket
    job_ids: set[str] = field(default_factory=set)

    def follows(self, job_id: str) -> bool:
        return not self.job_ids or job_id in self.job_ids


class JobUpdatesHub:
    """Set of live feeds; ``publish`` is an engine event listener."""

    def __init__(self):
        self._feeds: set[JobFeed] = set()
        self._lock = asyncio.Lock()

    @property
    def feed_count(self) -> int:
        return len(self._feeds)

    async def open(self, websocket: WebSocket) -> JobFeed:
        """Accept the handshake and register the client."""
        await websocket.accept()
        feed = JobFeed(websocket)
        async with self._lock:
            self._feeds.add(feed)
        logger.info("WebSocket client connected", extra={"feeds": len(self._feeds)})
        return feed

    async def close(self, feed: JobFeed) -> None:
        async with self._lock:
            self._feeds.discard(feed)
        logger.info("WebSocket client disconnected", extra={"feeds": len(self._feeds)})

    async def publish(self, event: JobEvent) -> None:
        """Send ``event`` to every feed following its job; drop dead feeds."""
        async with self._lock:
            targets = [feed for feed in self._feeds if feed.follows(event.job_id)]
        if not targets:
            return

        text = WebSocketMessage.from_event(event).model_dump_json()
        for feed in targets:
            try:
                await feed.websocket.send_text(text)
            except Exception as e:
                logger.warning(
                    f"Dropping WebSocket client: {e}",
                    extra={"job_id": event.job_id},
                )
                await self.close(feed)


async def _reply(feed: JobFeed, message: dict[str, Any]) -> None:
    action = message.get("action")

    if action == "subscribe":
        job_id = str(message["job_id"])
        feed.job_ids.add(job_id)
        await feed.websocket.send_json({"type": "subscribed", "job_id": job_id})
    elif action == "unsubscribe":
        job_id = str(message["job_id"])
        feed.job_ids.discard(job_id)
        await feed.websocket.send_json({"type": "unsubscribed", "job_id": job_id})
    elif action == "ping":
        await feed.websocket.send_json({"type": "pong"})
    else:
        await feed.websocket.send_json({"type": "error", "message": f"Unknown action: {action}"})


async def serve_job_updates(websocket: WebSocket, hub: JobUpdatesHub) -> None:
    """Run one client connection until it disconnects."""
    feed = await hub.open(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
                if not isinstance(message, dict):
                    raise ValueError("expected a JSON object")
                await _reply(feed, message)
            except (ValueError, KeyError) as e:
                await websocket.send_json({"type": "error", "message": f"Invalid message: {e}"})
    except WebSocketDisconnect:
        logger.debug("WebSocket closed by client")
    finally:
        await hub.close(feed)
