"""Append-only execution log for automation rules."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.automation import AutomationLog, AutomationLogStatus
from app.services.automation_errors import PersistenceError
from app.services.rule_store import RuleDefinition
from app.utils.redaction import summarize_error

logger = logging.getLogger("app.services.execution_log_service")


def snapshot_context(context: dict[str, Any]) -> dict[str, Any]:
    """Return a JSON-safe deep copy of an execution context."""
    return json.loads(json.dumps(context, default=str))


class ExecutionLogger:
    """Writes exactly one immutable row per execution attempt."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(
        self,
        rule: RuleDefinition,
        *,
        status: AutomationLogStatus,
        context: dict[str, Any],
        error: str | None = None,
    ) -> AutomationLog:
        entry = AutomationLog(
            rule_id=rule.id,
            owner_id=rule.owner_id,
            status=status,
            context=snapshot_context(context),
            error=summarize_error(error),
        )
        try:
            async with self._session_factory() as session:
                session.add(entry)
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"log_append_failed: {exc}") from exc
        logger.info(
            json.dumps(
                {
                    "event": "automation_execution_logged",
                    "rule_id": str(rule.id),
                    "status": status.value,
                    "error": entry.error,
                }
            )
        )
        return entry

    async def list_for_rule(
        self, owner_id: uuid.UUID, rule_id: uuid.UUID, *, limit: int = 50
    ) -> list[AutomationLog]:
        """Return the newest entries first."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(AutomationLog)
                    .where(AutomationLog.owner_id == owner_id, AutomationLog.rule_id == rule_id)
                    .order_by(AutomationLog.created_at.desc())
                    .limit(limit)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise PersistenceError(f"log_read_failed: {exc}") from exc
