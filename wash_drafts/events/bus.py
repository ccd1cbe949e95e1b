"""Best-effort fan-out of session state events."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable

from ..utils.logging import get_logger

LOGGER = get_logger(__name__)

EVENT_CONTENT_UPDATED = "content-updated"
EVENT_IMAGES_CACHED = "images-cached"
EVENT_HISTORY_UPDATED = "history-updated"
EVENT_SETTINGS_UPDATED = "settings-updated"

_CLOSED = object()


@dataclass(slots=True, frozen=True)
class BusEvent:
    type: str
    key: Hashable | None = None
    payload: Any = None
    meta: dict[str, Any] = field(default_factory=dict)


class SubscriptionClosed(RuntimeError):
    """Delivery was attempted on a subscription that is no longer open."""


class Subscription:
    """Queue-backed event stream owned by one subscriber.

    Iterate with ``async for`` or call :meth:`get`; the stream ends once the
    subscription is closed by its owner or dropped by the bus.
    """

    def __init__(self, bus: "BroadcastBus", maxsize: int) -> None:
        self._bus = bus
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: BusEvent) -> None:
        if self._closed:
            raise SubscriptionClosed("subscription closed")
        self._queue.put_nowait(event)

    async def get(self) -> BusEvent:
        event = await self._next()
        if event is None:
            raise SubscriptionClosed("subscription closed")
        return event

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        """Unsubscribe; any consumer blocked on the stream is released."""
        if self._closed:
            return
        self._closed = True
        self._bus._remove(self)
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    unsubscribe = close

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> BusEvent:
        event = await self._next()
        if event is None:
            raise StopAsyncIteration
        return event

    async def _next(self) -> BusEvent | None:
        if self._closed and self._queue.empty():
            return None
        event = await self._queue.get()
        if event is _CLOSED:
            return None
        return event


class CallbackSubscription:
    """Delivers events synchronously to a callable; an exception drops it."""

    def __init__(self, bus: "BroadcastBus", callback: Callable[[BusEvent], None]) -> None:
        self._bus = bus
        self._callback = callback
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: BusEvent) -> None:
        if self._closed:
            raise SubscriptionClosed("subscription closed")
        self._callback(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._remove(self)

    unsubscribe = close


class BroadcastBus:
    """Fans every published event out to all current subscribers.

    Publishing never blocks and never raises: a subscriber whose delivery
    fails (closed, queue full, callback error) is removed and the remaining
    subscribers are still served. New subscribers get no history.
    """

    def __init__(self, *, max_queue: int = 256) -> None:
        self._max_queue = max_queue
        self._subscribers: list[Subscription | CallbackSubscription] = []

    def subscribe(self, callback: Callable[[BusEvent], None] | None = None) -> Subscription | CallbackSubscription:
        subscriber: Subscription | CallbackSubscription
        if callback is None:
            subscriber = Subscription(self, self._max_queue)
        else:
            subscriber = CallbackSubscription(self, callback)
        self._subscribers.append(subscriber)
        return subscriber

    def publish(self, event: BusEvent) -> int:
        """Deliver ``event`` to every subscriber; returns how many received it."""
        delivered = 0
        for subscriber in list(self._subscribers):
            try:
                subscriber.deliver(event)
            except Exception as exc:  # noqa: BLE001
                LOGGER.debug(
                    "Dropping subscriber after failed delivery",
                    extra={"event": "bus.drop", "type": event.type, "error": repr(exc)},
                )
                subscriber.close()
                continue
            delivered += 1
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _remove(self, subscriber: Subscription | CallbackSubscription) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)


__all__ = [
    "BroadcastBus",
    "BusEvent",
    "CallbackSubscription",
    "EVENT_CONTENT_UPDATED",
    "EVENT_HISTORY_UPDATED",
    "EVENT_IMAGES_CACHED",
    "EVENT_SETTINGS_UPDATED",
    "Subscription",
    "SubscriptionClosed",
]
