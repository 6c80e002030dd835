"""Rule registry and orchestration of scheduling, matching, and dispatch.

Invariants:
- The registry holds only enabled rules and is read and written under one lock.
- Every create/update/delete changes the store, the registry, and the armed
  timers while that lock is held.
- Updates always disarm then re-arm schedule conditions, even when unchanged.
- In-flight executions are never cancelled; ``drain`` waits for them.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from functools import partial
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.schema.automation import AutomationRuleCreate, AutomationRuleUpdate, ScheduleCondition
from app.services.automation_engine import ActionDispatcher, ConcurrencyLimit, ExecutionResult, RetryPolicy
from app.services.automation_errors import PersistenceError
from app.services.change_feed import ChangeEventSource, change_feed
from app.services.event_matcher import EventMatcher
from app.services.execution_log_service import ExecutionLogger
from app.services.execution_monitor import ExecutionMonitor
from app.services.integrations import IntegrationRegistry, build_integration_registry
from app.services.rule_store import RuleDefinition, RuleStore
from app.services.schedule_service import RuleScheduler, is_valid_interval, require_valid_interval

logger = logging.getLogger("app.services.rule_engine")


class RuleEngine:
    """Owns the in-memory rule registry and wires triggers to the dispatcher."""

    def __init__(
        self,
        *,
        store: RuleStore,
        dispatcher: ActionDispatcher,
        scheduler: RuleScheduler | None = None,
        source: ChangeEventSource | None = None,
        strict_intervals: bool | None = None,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.scheduler = scheduler or RuleScheduler()
        self.source = source or change_feed
        self.strict_intervals = settings.automation_strict_intervals if strict_intervals is None else strict_intervals
        self.matcher = EventMatcher(snapshot=self.snapshot, dispatch=self.trigger)
        self._registry: dict[uuid.UUID, RuleDefinition] = {}
        self._lock = asyncio.Lock()
        self._inflight: set[asyncio.Task] = set()
        self.started = False

    async def start(self) -> None:
        """Load enabled rules, arm their schedules, and subscribe to change events."""
        if self.started:
            return
        async with self._lock:
            rules = await self.store.load_enabled()
            for rule in rules:
                self._register(rule)
        self.matcher.start(self.source)
        self.started = True
        logger.info("Rule engine started with %s rule(s)", len(rules))

    async def stop(self) -> None:
        """Unsubscribe, disarm every timer, and wait for in-flight executions."""
        await self.matcher.stop()
        async with self._lock:
            self._registry.clear()
            await self.scheduler.shutdown()
        await self.drain()
        self.started = False
        logger.info("Rule engine stopped")

    async def create_rule(self, owner_id: uuid.UUID, payload: AutomationRuleCreate) -> RuleDefinition:
        self._validate(payload.conditions, payload.actions)
        async with self._lock:
            rule = await self.store.insert(owner_id, payload)
            self._register(rule)
        logger.info("Created automation rule %s for owner %s", rule.id, owner_id)
        return rule

    async def update_rule(
        self, owner_id: uuid.UUID, rule_id: uuid.UUID, payload: AutomationRuleUpdate
    ) -> RuleDefinition:
        self._validate(payload.conditions or [], payload.actions or [])
        async with self._lock:
            rule = await self.store.update(owner_id, rule_id, payload)
            self._unregister(rule.id)
            self._register(rule)
        logger.info("Updated automation rule %s (enabled=%s)", rule.id, rule.enabled)
        return rule

    async def delete_rule(self, owner_id: uuid.UUID, rule_id: uuid.UUID) -> None:
        async with self._lock:
            existing = await self.store.get(owner_id, rule_id)
            self._unregister(existing.id)
            try:
                await self.store.delete(owner_id, rule_id)
            except PersistenceError:
                self._register(existing)
                raise
        self.dispatcher.monitor.forget(str(rule_id))
        logger.info("Deleted automation rule %s", rule_id)

    async def get_rule(self, owner_id: uuid.UUID, rule_id: uuid.UUID) -> RuleDefinition:
        return await self.store.get(owner_id, rule_id)

    async def list_rules(self, owner_id: uuid.UUID) -> list[RuleDefinition]:
        return await self.store.list_for_owner(owner_id)

    async def snapshot(self) -> list[RuleDefinition]:
        async with self._lock:
            return list(self._registry.values())

    async def lookup(self, rule_id: uuid.UUID) -> RuleDefinition | None:
        async with self._lock:
            return self._registry.get(rule_id)

    def trigger(self, rule: RuleDefinition, context: dict[str, Any], *, trigger: str = "event") -> asyncio.Task:
        """Start an execution in the background; failures only reach the execution log."""
        task = asyncio.create_task(
            self.dispatcher.execute(rule, context, trigger=trigger),
            name=f"automation-run:{rule.id}",
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def run_now(self, rule: RuleDefinition, context: dict[str, Any] | None = None) -> ExecutionResult:
        """Execute a rule immediately, regardless of its enabled flag."""
        return await self.dispatcher.execute(rule, context or {"manual": {"rule_id": str(rule.id)}}, trigger="manual")

    async def drain(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def state(self) -> dict[str, Any]:
        return {
            "started": self.started,
            "registered_rules": len(self._registry),
            "armed_timers": len(self.scheduler.active_keys()),
            "in_flight": len(self._inflight),
            "subscribed": self.matcher.running,
        }

    def _validate(self, conditions: Iterable[Any], actions: Iterable[Any]) -> None:
        for condition in conditions:
            if not isinstance(condition, ScheduleCondition):
                continue
            if self.strict_intervals:
                require_valid_interval(condition.interval)
            elif not is_valid_interval(condition.interval):
                logger.warning("Schedule interval %r will fall back to 1 hour", condition.interval)
        self.dispatcher.integrations.validate_actions(actions)

    def _register(self, rule: RuleDefinition) -> None:
        if not rule.enabled:
            return
        if not rule.conditions:
            logger.debug("Rule %s has no conditions and will never fire", rule.id)
        self._registry[rule.id] = rule
        for index, condition in rule.schedule_conditions():
            self.scheduler.arm(rule.id, index, condition.interval, partial(self._on_schedule, rule.id, index))

    def _unregister(self, rule_id: uuid.UUID) -> None:
        self.scheduler.disarm(rule_id)
        self._registry.pop(rule_id, None)

    async def _on_schedule(self, rule_id: uuid.UUID, condition_index: int) -> None:
        rule = await self.lookup(rule_id)
        if rule is None or condition_index >= len(rule.conditions):
            return
        condition = rule.conditions[condition_index]
        self.trigger(rule, {"schedule": condition.model_dump(mode="json")}, trigger="schedule")


def build_rule_engine(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    integrations: IntegrationRegistry | None = None,
    scheduler: RuleScheduler | None = None,
    source: ChangeEventSource | None = None,
    monitor: ExecutionMonitor | None = None,
) -> RuleEngine:
    """Wire a rule engine from settings and a session factory."""
    dispatcher = ActionDispatcher(
        integrations=integrations or build_integration_registry(session_factory),
        execution_logger=ExecutionLogger(session_factory),
        monitor=monitor,
        retry_policy=RetryPolicy.from_settings(),
        concurrency=ConcurrencyLimit.from_settings(),
    )
    return RuleEngine(
        store=RuleStore(session_factory),
        dispatcher=dispatcher,
        scheduler=scheduler,
        source=source,
    )
