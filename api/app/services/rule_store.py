"""Durable CRUD for automation rules.

Invariants:
- Condition/action JSON is validated against the tagged unions on every read
  and write; rows that fail validation on load are skipped, never executed.
- Database failures surface as PersistenceError.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.automation import AutomationRule
from app.schema.automation import (
    ACTION_LIST,
    CONDITION_LIST,
    AutomationRuleCreate,
    AutomationRuleUpdate,
    EventCondition,
    ScheduleCondition,
)
from app.services.automation_errors import PersistenceError, RuleNotFoundError, RuleValidationError

logger = logging.getLogger("app.services.rule_store")


@dataclass(slots=True)
class RuleDefinition:
    """Validated, detached view of a rule held in the engine registry."""
    id: uuid.UUID
    owner_id: uuid.UUID
    name: str
    enabled: bool
    conditions: list[Any] = field(default_factory=list)
    actions: list[Any] = field(default_factory=list)
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, row: AutomationRule) -> "RuleDefinition":
        try:
            conditions = CONDITION_LIST.validate_python(row.conditions or [])
            actions = ACTION_LIST.validate_python(row.actions or [])
        except ValidationError as exc:
            raise RuleValidationError(f"invalid_rule_definition:{row.id}: {exc.error_count()} error(s)") from exc
        return cls(
            id=row.id,
            owner_id=row.owner_id,
            name=row.name,
            description=row.description,
            enabled=row.enabled,
            conditions=conditions,
            actions=actions,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def schedule_conditions(self) -> list[tuple[int, ScheduleCondition]]:
        return [
            (index, condition)
            for index, condition in enumerate(self.conditions)
            if isinstance(condition, ScheduleCondition)
        ]

    def event_conditions(self) -> list[EventCondition]:
        return [condition for condition in self.conditions if isinstance(condition, EventCondition)]


def _dump(items: list[Any]) -> list[dict[str, Any]]:
    return [item.model_dump(mode="json") for item in items]


class RuleStore:
    """SQLAlchemy-backed rule persistence using one short session per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def load_enabled(self) -> list[RuleDefinition]:
        """Return every enabled rule, skipping rows that no longer validate."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(AutomationRule).where(AutomationRule.enabled.is_(True)))
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"rule_load_failed: {exc}") from exc
        rules: list[RuleDefinition] = []
        for row in rows:
            try:
                rules.append(RuleDefinition.from_model(row))
            except RuleValidationError as exc:
                logger.warning("Skipping automation rule %s: %s", row.id, exc.message)
        return rules

    async def list_for_owner(self, owner_id: uuid.UUID) -> list[RuleDefinition]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(AutomationRule)
                    .where(AutomationRule.owner_id == owner_id)
                    .order_by(AutomationRule.created_at)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"rule_list_failed: {exc}") from exc
        rules: list[RuleDefinition] = []
        for row in rows:
            try:
                rules.append(RuleDefinition.from_model(row))
            except RuleValidationError as exc:
                logger.warning("Omitting invalid automation rule %s: %s", row.id, exc.message)
        return rules

    async def get(self, owner_id: uuid.UUID, rule_id: uuid.UUID) -> RuleDefinition:
        try:
            async with self._session_factory() as session:
                row = await self._fetch(session, owner_id, rule_id)
                return RuleDefinition.from_model(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"rule_read_failed: {exc}") from exc

    async def insert(self, owner_id: uuid.UUID, payload: AutomationRuleCreate) -> RuleDefinition:
        row = AutomationRule(
            owner_id=owner_id,
            name=payload.name,
            description=payload.description,
            enabled=payload.enabled,
            conditions=_dump(payload.conditions),
            actions=_dump(payload.actions),
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
                await session.refresh(row)
                return RuleDefinition.from_model(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"rule_insert_failed: {exc}") from exc

    async def update(
        self, owner_id: uuid.UUID, rule_id: uuid.UUID, payload: AutomationRuleUpdate
    ) -> RuleDefinition:
        fields = payload.model_fields_set
        try:
            async with self._session_factory() as session:
                row = await self._fetch(session, owner_id, rule_id)
                if "name" in fields and payload.name is not None:
                    row.name = payload.name
                if "description" in fields:
                    row.description = payload.description
                if "enabled" in fields and payload.enabled is not None:
                    row.enabled = payload.enabled
                if "conditions" in fields and payload.conditions is not None:
                    row.conditions = _dump(payload.conditions)
                if "actions" in fields and payload.actions is not None:
                    row.actions = _dump(payload.actions)
                await session.commit()
                await session.refresh(row)
                return RuleDefinition.from_model(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"rule_update_failed: {exc}") from exc

    async def delete(self, owner_id: uuid.UUID, rule_id: uuid.UUID) -> None:
        try:
            async with self._session_factory() as session:
                row = await self._fetch(session, owner_id, rule_id)
                await session.delete(row)
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"rule_delete_failed: {exc}") from exc

    async def _fetch(self, session: AsyncSession, owner_id: uuid.UUID, rule_id: uuid.UUID) -> AutomationRule:
        result = await session.execute(
            select(AutomationRule).where(AutomationRule.id == rule_id, AutomationRule.owner_id == owner_id)
        )
        row = result.scalar_one_or_none()
        if not row:
            raise RuleNotFoundError("Automation rule not found")
        return row
