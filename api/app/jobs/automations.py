"""Worker job entrypoint for manual automation rule runs."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from app.db.session import async_session
from app.services.automation_engine import ActionDispatcher, RetryPolicy
from app.services.execution_log_service import ExecutionLogger
from app.services.integrations import build_integration_registry
from app.services.rule_store import RuleStore

logger = logging.getLogger("app.jobs.automations")


def run_automation_rule_job(
    *,
    rule_id: str,
    owner_id: str,
    context: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Execute an automation rule within a worker context."""

    async def _run() -> dict[str, Any]:
        rule = await RuleStore(async_session).get(uuid.UUID(owner_id), uuid.UUID(rule_id))
        dispatcher = ActionDispatcher(
            integrations=build_integration_registry(async_session),
            execution_logger=ExecutionLogger(async_session),
            retry_policy=RetryPolicy.from_settings(),
        )
        result = await dispatcher.execute(rule, context or {"manual": {"rule_id": rule_id}}, trigger="manual")
        return {"status": result.status.value, "error": result.error}

    result = asyncio.run(_run())
    logger.info("Automation run complete for %s (%s)", rule_id, result.get("status"))
    return result
