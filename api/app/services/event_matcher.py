"""Match change events against event conditions of registered rules."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from app.schema.automation import EventCondition
from app.services.change_feed import ChangeEvent, ChangeEventSource, Subscription, is_missing
from app.services.rule_store import RuleDefinition

logger = logging.getLogger("app.services.event_matcher")

SnapshotFunc = Callable[[], Awaitable[list[RuleDefinition]]]
DispatchFunc = Callable[[RuleDefinition, dict[str, Any]], Any]


def values_equal(expected: Any, actual: Any) -> bool:
    """Exact equality that keeps booleans distinct from numbers."""
    if isinstance(expected, bool) or isinstance(actual, bool):
        return isinstance(expected, bool) and isinstance(actual, bool) and expected is actual
    return expected == actual


def condition_matches(condition: EventCondition, event: ChangeEvent) -> bool:
    if condition.event_type != event.type:
        return False
    for key, expected in condition.parameter_filters.items():
        actual = event.field_value(key)
        if is_missing(actual) or not values_equal(expected, actual):
            return False
    return True


def matches_event(rule: RuleDefinition, event: ChangeEvent) -> bool:
    """A rule matches when any of its event conditions matches.

    Events that carry an ``owner_id`` only reach rules of that owner.
    """
    if not rule.enabled:
        return False
    owner = event.payload.get("owner_id")
    if owner is not None and str(owner) != str(rule.owner_id):
        return False
    return any(condition_matches(condition, event) for condition in rule.event_conditions())


class EventMatcher:
    """Consumes a change-event stream and dispatches each matching rule once."""

    def __init__(self, *, snapshot: SnapshotFunc, dispatch: DispatchFunc) -> None:
        self._snapshot = snapshot
        self._dispatch = dispatch
        self._subscription: Subscription | None = None
        self._consumer: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    def start(self, source: ChangeEventSource) -> None:
        if self.running:
            return
        self._subscription = source.subscribe()
        self._consumer = asyncio.create_task(self._consume(self._subscription), name="automation-event-matcher")
        logger.info("Event matcher subscribed")

    async def stop(self) -> None:
        if self._subscription:
            self._subscription.close()
        if self._consumer:
            await asyncio.gather(self._consumer, return_exceptions=True)
        self._subscription = None
        self._consumer = None

    async def handle(self, event: ChangeEvent) -> list[RuleDefinition]:
        """Dispatch every matching rule for one event and return the matches."""
        rules = await self._snapshot()
        matched = [rule for rule in rules if matches_event(rule, event)]
        if matched:
            logger.info("Event %s (%s) matched %s rule(s)", event.id, event.type, len(matched))
        for rule in matched:
            self._dispatch(rule, {"event": event.as_context()})
        return matched

    async def _consume(self, subscription: Subscription) -> None:
        async for event in subscription:
            try:
                await self.handle(event)
            except Exception:  # noqa: BLE001
                logger.exception("Failed to handle change event %s", event.id)
