"""Route-facing helpers for manual runs and change-event publishing."""

from __future__ import annotations

import uuid
from typing import Any

from app.jobs.automations import run_automation_rule_job
from app.schema.automation import ChangeEventCreate
from app.services.change_feed import ChangeEvent, ChangeFeed
from app.services.rule_engine import RuleEngine
from app.services.task_queue import QueuedJobIncomplete, task_queue

RUN_STATUS_UNKNOWN = "unknown"


async def run_rule(engine: RuleEngine, *, owner_id: uuid.UUID, rule_id: uuid.UUID) -> dict[str, Any]:
    """Execute an automation rule now, on a worker when one is available.

    A queued run that does not report back is cancelled and reported as
    ``unknown``; its outcome, if it ran, is in the execution log.
    """
    rule = await engine.get_rule(owner_id, rule_id)
    context = {"manual": {"rule_id": str(rule.id), "requested_by": str(owner_id)}}

    async def _fallback() -> dict[str, Any]:
        result = await engine.run_now(rule, context)
        return {"status": result.status.value, "error": result.error}

    try:
        return await task_queue.enqueue_or_run(
            run_automation_rule_job,
            fallback=_fallback,
            queue_name="automations",
            timeout_seconds=60,
            description=f"automation:{rule.id}",
            rule_id=str(rule.id),
            owner_id=str(owner_id),
            context=context,
        )
    except QueuedJobIncomplete as exc:
        return {"status": RUN_STATUS_UNKNOWN, "error": f"queued run {exc.reason}"}


def publish_event(feed: ChangeFeed, *, owner_id: uuid.UUID, payload: ChangeEventCreate) -> ChangeEvent:
    """Publish a change event on behalf of an owner."""
    fields = dict(payload.payload)
    fields["owner_id"] = str(owner_id)
    return feed.publish(ChangeEvent(type=payload.type, payload=fields))
