"""Manual runs through the task queue."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from app.models.automation import AutomationLog
from app.schema.automation import AutomationRuleCreate
from app.services import task_queue as task_queue_module
from app.services.automation_service import run_rule
from app.services.task_queue import QueuedJobIncomplete, task_queue


class FakeJob:
    def __init__(self, job_id: str, kwargs: dict) -> None:
        self.id = job_id
        self.kwargs = kwargs
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeQueue:
    def __init__(self, *, fail_enqueue: bool = False) -> None:
        self.jobs: list[FakeJob] = []
        self.fail_enqueue = fail_enqueue

    def enqueue(self, func, *, kwargs, job_timeout, description):
        if self.fail_enqueue:
            raise ConnectionError("redis went away")
        job = FakeJob(f"job-{len(self.jobs) + 1}", kwargs)
        self.jobs.append(job)
        return job

    def pending(self) -> list[FakeJob]:
        return [job for job in self.jobs if not job.cancelled]


@pytest.fixture()
def fake_queue(monkeypatch) -> FakeQueue:
    queue = FakeQueue()
    monkeypatch.setattr(task_queue, "_enabled", True)
    monkeypatch.setattr(task_queue, "_connection", object())
    monkeypatch.setattr(task_queue, "get_queue", lambda queue_name=None: queue)
    return queue


async def _create_rule(rule_engine, owner_id):
    payload = AutomationRuleCreate.model_validate(
        {
            "name": "Manual",
            "conditions": [],
            "actions": [{"type": "notification", "title_template": "hi", "message_template": "there"}],
        }
    )
    return await rule_engine.create_rule(owner_id, payload)


async def _log_count(session_factory, rule_id) -> int:
    async with session_factory() as session:
        result = await session.execute(select(AutomationLog).where(AutomationLog.rule_id == rule_id))
        return len(result.scalars().all())


@pytest.mark.asyncio
async def test_timed_out_job_is_cancelled_and_not_run_inline(
    rule_engine, session_factory, integrations, owner_id, fake_queue, monkeypatch
):
    def _timeout(job, timeout_seconds):
        raise QueuedJobIncomplete(job.id, f"did not finish within {timeout_seconds}s")

    monkeypatch.setattr(task_queue_module, "_wait_for_result", _timeout)
    rule = await _create_rule(rule_engine, owner_id)

    result = await run_rule(rule_engine, owner_id=owner_id, rule_id=rule.id)

    assert result["status"] == "unknown"
    assert "did not finish" in result["error"]
    assert len(fake_queue.jobs) == 1
    assert fake_queue.pending() == []
    assert integrations.calls == []
    assert await _log_count(session_factory, rule.id) == 0


@pytest.mark.asyncio
async def test_finished_job_result_is_returned(rule_engine, integrations, owner_id, fake_queue, monkeypatch):
    monkeypatch.setattr(
        task_queue_module, "_wait_for_result", lambda job, timeout_seconds: {"status": "success", "error": None}
    )
    rule = await _create_rule(rule_engine, owner_id)

    result = await run_rule(rule_engine, owner_id=owner_id, rule_id=rule.id)

    assert result == {"status": "success", "error": None}
    assert fake_queue.jobs[0].kwargs["rule_id"] == str(rule.id)
    assert not fake_queue.jobs[0].cancelled
    assert integrations.calls == []


@pytest.mark.asyncio
async def test_enqueue_failure_runs_inline_once(rule_engine, session_factory, integrations, owner_id, fake_queue):
    fake_queue.fail_enqueue = True
    rule = await _create_rule(rule_engine, owner_id)

    result = await run_rule(rule_engine, owner_id=owner_id, rule_id=rule.id)

    assert result == {"status": "success", "error": None}
    assert integrations.of_kind("notification") == [("hi", "there")]
    assert await _log_count(session_factory, rule.id) == 1


@pytest.mark.asyncio
async def test_queue_disabled_runs_inline(rule_engine, integrations, owner_id):
    rule = await _create_rule(rule_engine, owner_id)

    result = await run_rule(rule_engine, owner_id=owner_id, rule_id=rule.id)

    assert result["status"] == "success"
    assert len(integrations.of_kind("notification")) == 1
