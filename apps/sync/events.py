"""
Sync event fanout.

Every sync run publishes lifecycle events (run started, per-source outcome,
run completed) to whoever is subscribed at that moment. Delivery is best
effort and at most once: there is no buffering for absent subscribers and no
replay. A subscriber whose delivery fails is dropped; publishing never raises.

Event kinds:
- sync_started
- data_source_sync (one per data source processed)
- system_sync (operator-triggered sync of a single source)
- sync_completed
- welcome (sent once to a new stream subscriber)
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from django.utils import timezone

logger = logging.getLogger(__name__)

SYNC_STARTED = "sync_started"
DATA_SOURCE_SYNC = "data_source_sync"
SYSTEM_SYNC = "system_sync"
SYNC_COMPLETED = "sync_completed"
WELCOME = "welcome"


@dataclass(frozen=True)
class SyncEvent:
    """A single event, timestamped at creation."""

    kind: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=timezone.now)

    def to_message(self) -> dict[str, Any]:
        """Wire shape: {"type": kind, "data": {...payload, "timestamp"}}."""
        data = dict(self.payload)
        data["timestamp"] = self.timestamp.isoformat()
        return {"type": self.kind, "data": data}


Subscriber = Callable[[SyncEvent], None]


class EventBroadcaster:
    """Thread-safe set of subscribers receiving every published event."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> Subscriber:
        with self._lock:
            self._subscribers.append(subscriber)
        logger.debug(f"Event subscriber added ({self.subscriber_count} total)")
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, kind: str, **payload: Any) -> SyncEvent:
        """Build an event and deliver it to every current subscriber."""
        event = SyncEvent(kind=kind, payload=payload)
        self.broadcast(event)
        return event

    def broadcast(self, event: SyncEvent) -> int:
        """
        Deliver ``event`` to all subscribers.

        Returns:
            Number of subscribers that received it.
        """
        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        broken = []
        for subscriber in subscribers:
            try:
                subscriber(event)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping event subscriber after failed delivery of {event.kind}: {e}")
                broken.append(subscriber)

        for subscriber in broken:
            self.unsubscribe(subscriber)
        return delivered

    def open_stream(self, maxsize: int = 100) -> EventStream:
        """Subscribe a bounded queue, for consumers that pull events (SSE)."""
        stream = EventStream(self, maxsize=maxsize)
        self.subscribe(stream)
        stream.put_nowait(SyncEvent(kind=WELCOME, payload={"message": "Connected to sync events"}))
        return stream


class EventStream:
    """
    Queue-backed subscriber.

    When the consumer falls behind and the queue is full, new events are
    dropped for this stream only.
    """

    def __init__(self, broadcaster: EventBroadcaster, maxsize: int = 100):
        self._broadcaster = broadcaster
        self._queue: queue.Queue[SyncEvent] = queue.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def __call__(self, event: SyncEvent) -> None:
        if self.closed:
            raise RuntimeError("stream closed")
        self.put_nowait(event)

    def put_nowait(self, event: SyncEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            logger.debug(f"Event stream full, dropped {event.kind}")

    def get(self, timeout: float | None = None) -> SyncEvent | None:
        """Next event, or None when nothing arrives within ``timeout``."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self.closed = True
        self._broadcaster.unsubscribe(self)
