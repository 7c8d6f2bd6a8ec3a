"""Live subscription channels: one per connected dashboard or customer device.

A channel is a scoped resource. Entering it registers its filtered handlers on
the bus; leaving it (normal end, client disconnect, task cancellation or an
overflowing buffer) removes every handler it registered. Events are handed
from the publisher's thread to the channel's event loop and buffered in a
bounded queue, so a stalled peer never holds up the publisher.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from qrdine.events.bus import DeliveryError, Event, EventBus, Subscription, Topic

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 30.0


class ChannelKind(str, Enum):
    KITCHEN = "kitchen"
    WAITER = "waiter"
    CUSTOMER = "customer"


@dataclass(frozen=True)
class ChannelMessage:
    event: Optional[str]
    data: Optional[Dict[str, Any]] = None

    def encode(self) -> str:
        if self.event is None:
            return ": keepalive\n\n"
        return f"event: {self.event}\ndata: {json.dumps(self.data, default=str)}\n\n"


CONNECTED = ChannelMessage("connected", {"status": "connected"})
KEEPALIVE = ChannelMessage(None)

_STAFF_TOPICS = (Topic.NEW_ORDER, Topic.ORDER_UPDATED, Topic.CALL_WAITER)


@dataclass(frozen=True)
class ChannelFilter:
    kind: ChannelKind
    restaurant_id: Optional[str] = None
    order_id: Optional[str] = None

    @classmethod
    def kitchen(cls, restaurant_id: str) -> "ChannelFilter":
        return cls(ChannelKind.KITCHEN, restaurant_id=restaurant_id)

    @classmethod
    def waiter(cls, restaurant_id: str) -> "ChannelFilter":
        return cls(ChannelKind.WAITER, restaurant_id=restaurant_id)

    @classmethod
    def customer(cls, order_id: str) -> "ChannelFilter":
        return cls(ChannelKind.CUSTOMER, order_id=order_id)

    def topics(self) -> Tuple[Topic, ...]:
        if self.kind is ChannelKind.CUSTOMER:
            return (Topic.ORDER_UPDATED,)
        return _STAFF_TOPICS

    def matches(self, event: Event) -> bool:
        if event.topic not in self.topics():
            return False
        if self.kind is ChannelKind.CUSTOMER:
            return event.order_id is not None and event.order_id == self.order_id
        return event.restaurant_id is not None and event.restaurant_id == self.restaurant_id

    def project(self, event: Event) -> ChannelMessage:
        """Shape an event for this peer. Customers only ever get id + public status."""
        if self.kind is ChannelKind.CUSTOMER:
            return ChannelMessage("status-update", {
                "order_id": event.payload.get("order_id"),
                "public_status": event.payload.get("public_status"),
            })
        if event.topic is Topic.NEW_ORDER:
            return ChannelMessage(event.topic.value, event.payload.get("order", event.payload))
        return ChannelMessage(event.topic.value, dict(event.payload))


class LiveChannel:
    def __init__(self, bus: EventBus, filter: ChannelFilter, *,
                 keepalive: float = KEEPALIVE_SECONDS, queue_size: int = 256):
        self.bus = bus
        self.filter = filter
        self.keepalive = keepalive
        self.queue_size = queue_size
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._subs: List[Subscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "LiveChannel":
        self.open()
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()

    def open(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._queue.put_nowait(CONNECTED)
        for topic in self.filter.topics():
            self._subs.append(self.bus.subscribe(topic, self._on_event, self.filter.matches))
        logger.debug("channel %s opened", self.filter)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for sub in self._subs:
            self.bus.unsubscribe(sub)
        self._subs.clear()
        self._wake()
        logger.debug("channel %s closed", self.filter)

    def _wake(self) -> None:
        # unblock a reader waiting on the queue
        if self._queue is None:
            return
        while self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    def _on_event(self, event: Event) -> None:
        # publisher thread
        if self._closed or self._loop is None:
            raise DeliveryError("channel closed")
        message = self.filter.project(event)
        try:
            self._loop.call_soon_threadsafe(self._offer, message)
        except RuntimeError as exc:
            raise DeliveryError("event loop closed") from exc

    def _offer(self, message: ChannelMessage) -> None:
        # channel loop
        if self._closed:
            return
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("channel %s overflowed, disconnecting slow peer", self.filter)
            self.close()

    async def messages(
        self, is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> AsyncIterator[ChannelMessage]:
        """Yield buffered messages, with a keepalive on a fixed interval."""
        if self._queue is None:
            raise RuntimeError("channel is not open")

        async def gone() -> bool:
            return self._closed or (is_disconnected is not None and await is_disconnected())

        loop = asyncio.get_running_loop()
        next_ping = loop.time() + self.keepalive
        while True:
            remaining = next_ping - loop.time()
            if remaining <= 0:
                if await gone():
                    return
                next_ping += self.keepalive
                yield KEEPALIVE
                continue
            try:
                message = await asyncio.wait_for(self._queue.get(), remaining)
            except asyncio.TimeoutError:
                continue
            if message is None:
                return
            yield message
            if await gone():
                return


async def sse_stream(
    channel: LiveChannel,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncIterator[str]:
    """Server-sent-events text for a channel; releases it on every exit path."""
    async with channel:
        async for message in channel.messages(is_disconnected):
            yield message.encode()
