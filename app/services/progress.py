"""Keyed fan-out of download progress events to WebSocket subscribers.

Delivery is fire-and-forget: publishing never blocks the download, a
subscriber whose queue is full misses events, and events for ids nobody
listens to are dropped.
"""

import asyncio
import threading
import uuid
from typing import Dict, Optional, Set

from app.services import logger

SUBSCRIBER_QUEUE_SIZE = 256


def mint_download_id() -> str:
    """Server-generated correlation token for a download."""
    return uuid.uuid4().hex


class Subscription:
    """One listener on one download id."""

    def __init__(self, relay: "ProgressRelay", download_id: str):
        self.relay = relay
        self.download_id = download_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self.loop = asyncio.get_running_loop()

    async def get(self) -> dict:
        return await self.queue.get()

    def offer(self, event: dict) -> bool:
        try:
            self.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            return False

    def close(self) -> None:
        self.relay.unsubscribe(self)


class ProgressRelay:
    """Registry of subscriptions keyed by download id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[str, Set[Subscription]] = {}

    def subscribe(self, download_id: str) -> Subscription:
        """Start listening for ``download_id``. Must be called from the event loop."""
        subscription = Subscription(self, download_id)
        with self._lock:
            self._subscribers.setdefault(download_id, set()).add(subscription)
        logger.debug("Progress subscriber joined", "progress", {"download_id": download_id})
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.download_id)
            if not subscribers:
                return
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscribers[subscription.download_id]

    def subscriber_count(self, download_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(download_id, ()))

    def publish(self, download_id: Optional[str], percent: float, is_batch: bool = False) -> int:
        """
        Deliver a progress event to everyone listening on ``download_id``.

        Safe to call from any thread. Returns the number of subscribers the
        event was handed to; a missing id publishes nothing.
        """
        if not download_id:
            return 0

        event = {"percent": round(float(percent), 2)}
        if is_batch:
            event["isBatch"] = True

        with self._lock:
            subscribers = list(self._subscribers.get(download_id, ()))

        delivered = 0
        for subscription in subscribers:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is subscription.loop:
                delivered += subscription.offer(event)
            else:
                try:
                    subscription.loop.call_soon_threadsafe(subscription.offer, event)
                except RuntimeError:
                    # Subscriber's loop already closed
                    continue
                delivered += 1
        return delivered


_relay: Optional[ProgressRelay] = None


def get_progress_relay() -> ProgressRelay:
    """Get the process-wide progress relay."""
    global _relay
    if _relay is None:
        _relay = ProgressRelay()
    return _relay
