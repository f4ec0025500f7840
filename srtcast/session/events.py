# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    STARTED = "started"
    CONNECTED = "connected"
    LOG = "log"
    WARNING = "warning"
    ERROR = "error"
    ENDED = "ended"


@dataclass(frozen=True)
class SessionEvent:
    """One lifecycle, log or error notification."""

    type: EventType
    payload: Any = None
    session_id: str | None = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "payload": self.payload,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
        }


_CLOSED = object()


class Subscription:
    """A subscriber's ordered view of the bus.

    Iterate with ``async for`` or call get(); both end once the subscription or
    the bus is closed and every queued event has been read.
    """

    def __init__(self, bus: "EventBus", maxsize: int = 0):
        self._bus = bus
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._finished = False
        self.drops = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _push(self, item: Any) -> None:
        if self._queue.full():
            # Drop oldest event to make room
            try:
                self._queue.get_nowait()
                self.drops += 1
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(item)

    def _deliver(self, event: SessionEvent) -> None:
        if not self._closed:
            self._push(event)

    def _end(self) -> None:
        if not self._closed:
            self._closed = True
            self._push(_CLOSED)

    def close(self) -> None:
        """Stop receiving events; already queued events can still be read."""
        self._bus.unsubscribe(self)

    async def get(self, timeout: float | None = None) -> SessionEvent | None:
        """Next event, or None once the subscription has ended."""
        if self._finished:
            return None
        item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        if item is _CLOSED:
            self._finished = True
            return None
        return item

    def get_nowait(self) -> SessionEvent | None:
        """Next queued event without waiting, None if nothing is queued."""
        if self._finished or self._queue.empty():
            return None
        item = self._queue.get_nowait()
        if item is _CLOSED:
            self._finished = True
            return None
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> SessionEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventBus:
    """Typed, closable publish point for session events.

    publish() never blocks: every subscriber has its own queue and a full
    bounded queue loses its oldest event. Events reach each subscriber in
    publish order.
    """

    def __init__(self, queue_size: int = 0):
        self.queue_size = queue_size
        self._subscriptions: list[Subscription] = []
        self._closed = False
        self.logger = logging.getLogger("events")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, maxsize: int | None = None) -> Subscription:
        if self._closed:
            raise RuntimeError("event bus is closed")
        sub = Subscription(self, self.queue_size if maxsize is None else maxsize)
        self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)
        sub._end()

    def publish(self, event: SessionEvent) -> bool:
        """Deliver an event to all subscribers. Returns False if the bus is closed."""
        if self._closed:
            self.logger.debug(f"dropping {event.type.value} event, bus closed")
            return False

        for sub in list(self._subscriptions):
            before = sub.drops
            sub._deliver(event)
            if sub.drops != before:
                self.logger.warning(f"subscriber queue full, dropped oldest event (total drops={sub.drops})")
        return True

    def emit(self, event_type: EventType, payload: Any = None, session_id: str | None = None) -> bool:
        return self.publish(SessionEvent(event_type, payload, session_id))

    def close(self) -> None:
        """End every subscription and refuse further events."""
        if self._closed:
            return
        self._closed = True
        for sub in list(self._subscriptions):
            self.unsubscribe(sub)
