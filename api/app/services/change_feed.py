"""Change-notification stream consumed by the event matcher.

Any source that implements :class:`ChangeEventSource` can feed the engine; the
in-process :class:`ChangeFeed` is what the API and other subsystems publish to.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

logger = logging.getLogger("app.services.change_feed")

EventPredicate = Callable[["ChangeEvent"], bool]

_MISSING = object()


def new_event_id() -> str:
    stamp = int(time.time() * 1000)
    return f"evt-{stamp}-{secrets.token_hex(4)}"


@dataclass(slots=True)
class ChangeEvent:
    """A typed change notification with a flat field payload."""
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_event_id)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def field_value(self, name: str) -> Any:
        """Return the named event field, or a sentinel when absent."""
        if name == "type":
            return self.type
        return self.payload.get(name, _MISSING)

    def as_context(self) -> dict[str, Any]:
        return {**self.payload, "type": self.type, "id": self.id}

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "ChangeEvent":
        """Build an event from a flat ``{"type": ..., **fields}`` mapping."""
        payload = {key: value for key, value in data.items() if key != "type"}
        return cls(type=str(data["type"]), payload=payload)


def is_missing(value: Any) -> bool:
    return value is _MISSING


class Subscription:
    """Cancellable async iterator over events accepted by a predicate."""

    def __init__(self, feed: "ChangeFeed", predicate: EventPredicate | None) -> None:
        self._feed = feed
        self._predicate = predicate
        self._queue: asyncio.Queue[ChangeEvent | None] = asyncio.Queue()
        self.closed = False

    def accepts(self, event: ChangeEvent) -> bool:
        if self.closed:
            return False
        if self._predicate is None:
            return True
        try:
            return bool(self._predicate(event))
        except Exception:  # noqa: BLE001
            logger.exception("Subscription predicate failed for event %s", event.id)
            return False

    def deliver(self, event: ChangeEvent) -> None:
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed.unsubscribe(self)
        self._queue.put_nowait(None)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ChangeEventSource(Protocol):
    def subscribe(self, predicate: EventPredicate | None = None) -> Subscription: ...


class ChangeFeed:
    """In-memory pub/sub fan-out of change events."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def subscribe(self, predicate: EventPredicate | None = None) -> Subscription:
        subscription = Subscription(self, predicate)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with contextlib.suppress(ValueError):
            self._subscriptions.remove(subscription)

    def publish(self, event: ChangeEvent) -> ChangeEvent:
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.accepts(event):
                subscription.deliver(event)
                delivered += 1
        logger.debug("Published change event %s (%s) to %s subscriber(s)", event.id, event.type, delivered)
        return event

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)


change_feed = ChangeFeed()
