"""In-process publish/subscribe bus for order lifecycle events.

Writers (the ordering services) publish; live channels subscribe with a filter.
Publishing is synchronous fan-out: every handler registered for the topic is
called in registration order on the publisher's thread, so one subscriber
sees events in publish order. Handlers must not block; live channels only hand
the event over to their own event loop.

There is no persistence and no replay. A subscriber that registers after an
event was published never sees it.
"""
from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class Topic(str, Enum):
    NEW_ORDER = "new-order"
    ORDER_UPDATED = "order-updated"
    CALL_WAITER = "call-waiter"


@dataclass(frozen=True)
class Event:
    topic: Topic
    payload: Dict[str, Any]

    @property
    def restaurant_id(self) -> Optional[str]:
        return self.payload.get("restaurant_id")

    @property
    def order_id(self) -> Optional[str]:
        return self.payload.get("order_id")


EventFilter = Callable[[Event], bool]
EventHandler = Callable[[Event], None]


class DeliveryError(Exception):
    """Raised by a handler whose transport can no longer accept events."""


@dataclass(eq=False)
class Subscription:
    topic: Topic
    handler: EventHandler
    filter: Optional[EventFilter] = None
    seq: int = 0
    active: bool = field(default=True)


class EventBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: Dict[Topic, List[Subscription]] = {t: [] for t in Topic}
        self._seq = itertools.count(1)

    def subscribe(self, topic: Topic | str, handler: EventHandler,
                  filter: Optional[EventFilter] = None) -> Subscription:
        sub = Subscription(topic=Topic(topic), handler=handler, filter=filter, seq=next(self._seq))
        with self._lock:
            self._subscribers[sub.topic].append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            sub.active = False
            try:
                self._subscribers[sub.topic].remove(sub)
            except ValueError:
                pass

    def publish(self, topic: Topic | str, payload: Dict[str, Any]) -> int:
        """Deliver to current subscribers; returns how many accepted the event."""
        event = Event(topic=Topic(topic), payload=payload)
        with self._lock:
            targets = list(self._subscribers[event.topic])

        delivered = 0
        for sub in targets:
            if not sub.active:
                continue
            if sub.filter is not None and not sub.filter(event):
                continue
            try:
                sub.handler(event)
                delivered += 1
            except DeliveryError:
                # broken transport, drop it lazily
                logger.warning("dropping subscriber %s on %s after failed write", sub.seq, event.topic.value)
                self.unsubscribe(sub)
            except Exception:
                logger.exception("subscriber %s failed on %s", sub.seq, event.topic.value)
        return delivered

    def subscriber_count(self, topic: Topic | str | None = None) -> int:
        with self._lock:
            if topic is not None:
                return len(self._subscribers[Topic(topic)])
            return sum(len(v) for v in self._subscribers.values())

