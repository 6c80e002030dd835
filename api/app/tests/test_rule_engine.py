"""Rule registry lifecycle, schedule arming, and end-to-end execution."""

from __future__ import annotations

import asyncio
import uuid

import pytest
from sqlalchemy import select

from app.models.automation import AutomationLog, AutomationLogStatus, AutomationRule
from app.schema.automation import AutomationRuleCreate, AutomationRuleUpdate
from app.services.automation_errors import IntegrationConfigurationError, RuleNotFoundError, RuleValidationError
from app.services.change_feed import ChangeEvent
from app.services.rule_engine import build_rule_engine
from app.services.schedule_service import RuleScheduler, ScheduleKey
from app.tests.utils import eventually


def _payload(**overrides) -> AutomationRuleCreate:
    data = {
        "name": "Interval reminder",
        "conditions": [{"type": "schedule", "interval": "1 minutes"}],
        "actions": [
            {"type": "notification", "title_template": "Every {{schedule.interval}}", "message_template": "tick"}
        ],
    }
    data.update(overrides)
    return AutomationRuleCreate.model_validate(data)


async def _logs(session_factory, rule_id) -> list[AutomationLog]:
    async with session_factory() as session:
        result = await session.execute(select(AutomationLog).where(AutomationLog.rule_id == rule_id))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_schedule_rule_runs_after_one_interval(rule_engine, session_factory, integrations, clock, owner_id):
    rule = await rule_engine.create_rule(owner_id, _payload())

    assert rule_engine.scheduler.active_keys(rule.id) == [ScheduleKey(str(rule.id), 0)]
    await eventually(lambda: clock.requested)
    assert clock.requested == [60.0]

    clock.tick()
    await eventually(lambda: integrations.of_kind("notification"))
    await rule_engine.drain()

    assert integrations.of_kind("notification") == [("Every 1 minutes", "tick")]
    logs = await _logs(session_factory, rule.id)
    assert len(logs) == 1
    assert logs[0].status == AutomationLogStatus.SUCCESS
    assert logs[0].context == {"schedule": {"type": "schedule", "interval": "1 minutes"}}
    assert logs[0].owner_id == owner_id


@pytest.mark.asyncio
async def test_each_schedule_condition_gets_its_own_timer(rule_engine, owner_id):
    rule = await rule_engine.create_rule(
        owner_id,
        _payload(
            conditions=[
                {"type": "schedule", "interval": "5 minutes"},
                {"type": "event", "event_type": "task.completed"},
                {"type": "schedule", "interval": "1 days"},
            ]
        ),
    )
    keys = sorted(rule_engine.scheduler.active_keys(rule.id), key=lambda key: key.condition_index)
    assert keys == [ScheduleKey(str(rule.id), 0), ScheduleKey(str(rule.id), 2)]


@pytest.mark.asyncio
async def test_update_rearms_even_when_schedule_is_unchanged(rule_engine, owner_id):
    rule = await rule_engine.create_rule(owner_id, _payload())
    key = ScheduleKey(str(rule.id), 0)
    before = rule_engine.scheduler._timers[key]

    updated = await rule_engine.update_rule(owner_id, rule.id, AutomationRuleUpdate(name="Renamed"))

    assert updated.name == "Renamed"
    after = rule_engine.scheduler._timers[key]
    assert after is not before
    assert rule_engine.scheduler.active_keys(rule.id) == [key]
    assert (await rule_engine.lookup(rule.id)).name == "Renamed"


@pytest.mark.asyncio
async def test_disable_and_enable_move_rule_in_and_out_of_registry(rule_engine, owner_id):
    rule = await rule_engine.create_rule(owner_id, _payload())

    await rule_engine.update_rule(owner_id, rule.id, AutomationRuleUpdate(enabled=False))
    assert await rule_engine.lookup(rule.id) is None
    assert rule_engine.scheduler.active_keys(rule.id) == []

    await rule_engine.update_rule(owner_id, rule.id, AutomationRuleUpdate(enabled=True))
    assert await rule_engine.lookup(rule.id) is not None
    assert len(rule_engine.scheduler.active_keys(rule.id)) == 1


@pytest.mark.asyncio
async def test_disabled_rules_are_stored_but_not_registered(rule_engine, owner_id):
    rule = await rule_engine.create_rule(owner_id, _payload(enabled=False))
    assert await rule_engine.lookup(rule.id) is None
    assert rule_engine.scheduler.active_keys() == []
    assert [r.id for r in await rule_engine.list_rules(owner_id)] == [rule.id]


@pytest.mark.asyncio
async def test_delete_disarms_and_removes(rule_engine, session_factory, owner_id):
    rule = await rule_engine.create_rule(owner_id, _payload())
    await rule_engine.delete_rule(owner_id, rule.id)

    assert rule_engine.scheduler.active_keys(rule.id) == []
    assert await rule_engine.lookup(rule.id) is None
    async with session_factory() as session:
        assert await session.get(AutomationRule, rule.id) is None
    with pytest.raises(RuleNotFoundError):
        await rule_engine.get_rule(owner_id, rule.id)


class _GatedWriter:
    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.started: list[str] = []

    async def write(self, owner_id, title, message) -> None:
        self.started.append(title)
        await self.gate.wait()


@pytest.mark.asyncio
async def test_delete_does_not_cancel_in_flight_execution(rule_engine, session_factory, feed, owner_id):
    writer = _GatedWriter()
    rule_engine.dispatcher.integrations.notification_writer = writer
    rule = await rule_engine.create_rule(
        owner_id,
        _payload(
            conditions=[{"type": "event", "event_type": "note.saved"}],
            actions=[{"type": "notification", "title_template": "saved", "message_template": "{{event.id}}"}],
        ),
    )

    feed.publish(ChangeEvent(type="note.saved"))
    await eventually(lambda: writer.started)
    await rule_engine.delete_rule(owner_id, rule.id)

    assert await rule_engine.lookup(rule.id) is None
    assert rule_engine.state()["in_flight"] == 1

    writer.gate.set()
    await rule_engine.drain()

    logs = await _logs(session_factory, rule.id)
    assert [log.status for log in logs] == [AutomationLogStatus.SUCCESS]
    assert writer.started == ["saved"]


@pytest.mark.asyncio
async def test_rules_are_scoped_to_their_owner(rule_engine, owner_id):
    rule = await rule_engine.create_rule(owner_id, _payload())
    stranger = uuid.uuid4()
    with pytest.raises(RuleNotFoundError):
        await rule_engine.delete_rule(stranger, rule.id)
    assert await rule_engine.lookup(rule.id) is not None


@pytest.mark.asyncio
async def test_unregistered_integration_is_rejected_before_persisting(rule_engine, session_factory, owner_id):
    payload = _payload(actions=[{"type": "api", "integration": "unknown", "endpoint": "/x"}])
    with pytest.raises(IntegrationConfigurationError):
        await rule_engine.create_rule(owner_id, payload)
    async with session_factory() as session:
        result = await session.execute(select(AutomationRule))
        assert result.scalars().all() == []


@pytest.mark.asyncio
async def test_strict_mode_rejects_unparseable_intervals(rule_engine, owner_id):
    payload = _payload(conditions=[{"type": "schedule", "interval": "3 fortnights"}])
    rule_engine.strict_intervals = True
    with pytest.raises(RuleValidationError):
        await rule_engine.create_rule(owner_id, payload)

    rule_engine.strict_intervals = False
    rule = await rule_engine.create_rule(owner_id, payload)
    assert len(rule_engine.scheduler.active_keys(rule.id)) == 1


@pytest.mark.asyncio
async def test_event_runs_each_matching_rule_once(rule_engine, session_factory, integrations, feed, owner_id):
    rule = await rule_engine.create_rule(
        owner_id,
        _payload(
            conditions=[
                {"type": "event", "event_type": "task.completed"},
                {"type": "event", "event_type": "task.completed", "parameter_filters": {"priority": "high"}},
            ],
            actions=[
                {"type": "notification", "title_template": "{{event.title}}", "message_template": "{{event.priority}}"}
            ],
        ),
    )

    feed.publish(ChangeEvent(type="task.completed", payload={"title": "Write spec", "priority": "high"}))
    await eventually(lambda: integrations.of_kind("notification"))
    await rule_engine.drain()

    assert integrations.of_kind("notification") == [("Write spec", "high")]
    logs = await _logs(session_factory, rule.id)
    assert len(logs) == 1
    assert logs[0].context["event"]["title"] == "Write spec"


@pytest.mark.asyncio
async def test_start_loads_only_enabled_rules(session_factory, integrations, clock, feed, owner_id):
    first = build_rule_engine(
        session_factory, integrations=integrations.registry(), scheduler=RuleScheduler(sleep=clock.sleep), source=feed
    )
    enabled = await first.create_rule(owner_id, _payload())
    disabled = await first.create_rule(owner_id, _payload(enabled=False))
    await first.stop()

    second = build_rule_engine(
        session_factory, integrations=integrations.registry(), scheduler=RuleScheduler(sleep=clock.sleep), source=feed
    )
    await second.start()
    try:
        assert [rule.id for rule in await second.snapshot()] == [enabled.id]
        assert await second.lookup(disabled.id) is None
        assert second.state()["armed_timers"] == 1
        assert second.state()["subscribed"] is True
    finally:
        await second.stop()
    assert second.scheduler.active_keys() == []


@pytest.mark.asyncio
async def test_rules_without_conditions_never_fire(rule_engine, integrations, feed, owner_id):
    rule = await rule_engine.create_rule(owner_id, _payload(conditions=[]))
    feed.publish(ChangeEvent(type="task.completed"))
    await rule_engine.drain()
    assert await rule_engine.lookup(rule.id) is not None
    assert rule_engine.scheduler.active_keys(rule.id) == []
    assert integrations.calls == []


@pytest.mark.asyncio
async def test_manual_run_ignores_enabled_flag(rule_engine, session_factory, integrations, owner_id):
    rule = await rule_engine.create_rule(owner_id, _payload(enabled=False))
    result = await rule_engine.run_now(rule)
    assert result.succeeded
    logs = await _logs(session_factory, rule.id)
    assert logs[0].context == {"manual": {"rule_id": str(rule.id)}}
