"""Automation rule schemas.

Conditions and actions are tagged unions discriminated by ``type``; unknown
discriminants fail validation before anything is persisted.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from app.schema.base import ORMModel


class _Tagged(BaseModel):
    model_config = ConfigDict(extra="forbid")


class EventCondition(_Tagged):
    """Fires when a change event of ``event_type`` matches every filter."""
    type: Literal["event"] = "event"
    event_type: str = Field(min_length=1)
    parameter_filters: dict[str, Any] = Field(default_factory=dict)


class ScheduleCondition(_Tagged):
    """Fires periodically, e.g. ``"15 minutes"``."""
    type: Literal["schedule"] = "schedule"
    interval: str = Field(min_length=1)


class TriggerCondition(_Tagged):
    """Webhook-style trigger; stored and passed through, not evaluated."""
    type: Literal["trigger"] = "trigger"
    trigger_type: str = Field(min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)


Condition = Annotated[
    Union[EventCondition, ScheduleCondition, TriggerCondition],
    Field(discriminator="type"),
]


class ApiAction(_Tagged):
    type: Literal["api"] = "api"
    integration: str = Field(min_length=1)
    endpoint: str = Field(min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)


class EmailParameters(BaseModel):
    to: str = Field(min_length=1)
    subject: str = Field(min_length=1)


class EmailAction(_Tagged):
    type: Literal["email"] = "email"
    template: str
    parameters: EmailParameters


class CalendarAction(_Tagged):
    type: Literal["calendar"] = "calendar"
    integration: str = Field(min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)


class NotificationAction(_Tagged):
    type: Literal["notification"] = "notification"
    title_template: str
    message_template: str


Action = Annotated[
    Union[ApiAction, EmailAction, CalendarAction, NotificationAction],
    Field(discriminator="type"),
]

CONDITION_LIST = TypeAdapter(list[Condition])
ACTION_LIST = TypeAdapter(list[Action])


class AutomationRuleCreate(BaseModel):
    """Payload for creating an automation rule."""
    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=500)
    enabled: bool = True
    conditions: list[Condition] = Field(default_factory=list)
    actions: list[Action] = Field(default_factory=list)


class AutomationRuleUpdate(BaseModel):
    """Payload for updating an automation rule."""
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=500)
    enabled: bool | None = None
    conditions: list[Condition] | None = None
    actions: list[Action] | None = None


class AutomationRuleRead(ORMModel):
    """Automation rule representation."""
    id: UUID
    owner_id: UUID
    name: str
    description: str | None = None
    enabled: bool
    conditions: list[Condition]
    actions: list[Action]
    created_at: datetime
    updated_at: datetime


class AutomationLogRead(ORMModel):
    """Execution log entry representation."""
    id: UUID
    rule_id: UUID
    owner_id: UUID
    status: str
    context: dict | None = None
    error: str | None = None
    created_at: datetime

    @field_validator("status", mode="before")
    @classmethod
    def _status_value(cls, value: Any) -> Any:
        return getattr(value, "value", value)


class AutomationRunResponse(BaseModel):
    """Automation rule execution summary."""
    rule_id: UUID
    status: str
    error: str | None = None


class ChangeEventCreate(BaseModel):
    """Change event published by another subsystem."""
    type: str = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)


class ChangeEventAccepted(BaseModel):
    id: str
    type: str
