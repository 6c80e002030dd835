"""Automation rule endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.deps import get_change_feed, get_current_owner_id, get_rule_engine
from app.schema.automation import (
    AutomationLogRead,
    AutomationRuleCreate,
    AutomationRuleRead,
    AutomationRuleUpdate,
    AutomationRunResponse,
    ChangeEventAccepted,
    ChangeEventCreate,
)
from app.services import automation_service
from app.services.change_feed import ChangeFeed
from app.services.rule_engine import RuleEngine

router = APIRouter()


@router.get("", response_model=list[AutomationRuleRead])
async def list_automation_rules(
    engine: RuleEngine = Depends(get_rule_engine),
    owner_id: uuid.UUID = Depends(get_current_owner_id),
) -> list[AutomationRuleRead]:
    """List automation rules for the current user."""
    rules = await engine.list_rules(owner_id)
    return [AutomationRuleRead.model_validate(rule) for rule in rules]


@router.post("", response_model=AutomationRuleRead, status_code=status.HTTP_201_CREATED)
async def create_automation_rule(
    payload: AutomationRuleCreate,
    engine: RuleEngine = Depends(get_rule_engine),
    owner_id: uuid.UUID = Depends(get_current_owner_id),
) -> AutomationRuleRead:
    """Create a new automation rule and arm its schedules."""
    rule = await engine.create_rule(owner_id, payload)
    return AutomationRuleRead.model_validate(rule)


@router.post("/events", response_model=ChangeEventAccepted, status_code=status.HTTP_202_ACCEPTED)
async def publish_change_event(
    payload: ChangeEventCreate,
    feed: ChangeFeed = Depends(get_change_feed),
    owner_id: uuid.UUID = Depends(get_current_owner_id),
) -> ChangeEventAccepted:
    """Publish a change event; matching rules run asynchronously."""
    event = automation_service.publish_event(feed, owner_id=owner_id, payload=payload)
    return ChangeEventAccepted(id=event.id, type=event.type)


@router.get("/{rule_id}", response_model=AutomationRuleRead)
async def get_automation_rule(
    rule_id: uuid.UUID,
    engine: RuleEngine = Depends(get_rule_engine),
    owner_id: uuid.UUID = Depends(get_current_owner_id),
) -> AutomationRuleRead:
    rule = await engine.get_rule(owner_id, rule_id)
    return AutomationRuleRead.model_validate(rule)


@router.patch("/{rule_id}", response_model=AutomationRuleRead)
async def update_automation_rule(
    rule_id: uuid.UUID,
    payload: AutomationRuleUpdate,
    engine: RuleEngine = Depends(get_rule_engine),
    owner_id: uuid.UUID = Depends(get_current_owner_id),
) -> AutomationRuleRead:
    """Update an automation rule and re-arm its schedules."""
    rule = await engine.update_rule(owner_id, rule_id, payload)
    return AutomationRuleRead.model_validate(rule)


@router.delete(
    "/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    response_model=None,
)
async def delete_automation_rule(
    rule_id: uuid.UUID,
    engine: RuleEngine = Depends(get_rule_engine),
    owner_id: uuid.UUID = Depends(get_current_owner_id),
) -> None:
    """Delete an automation rule."""
    await engine.delete_rule(owner_id, rule_id)


@router.get("/{rule_id}/logs", response_model=list[AutomationLogRead])
async def list_automation_logs(
    rule_id: uuid.UUID,
    limit: int = Query(default=50, ge=1, le=500),
    engine: RuleEngine = Depends(get_rule_engine),
    owner_id: uuid.UUID = Depends(get_current_owner_id),
) -> list[AutomationLogRead]:
    """Return execution log entries for a rule, newest first."""
    entries = await engine.dispatcher.execution_logger.list_for_rule(owner_id, rule_id, limit=limit)
    return [AutomationLogRead.model_validate(entry) for entry in entries]


@router.post("/{rule_id}/run", response_model=AutomationRunResponse)
async def run_automation_rule(
    rule_id: uuid.UUID,
    engine: RuleEngine = Depends(get_rule_engine),
    owner_id: uuid.UUID = Depends(get_current_owner_id),
) -> AutomationRunResponse:
    """Trigger an automation rule immediately."""
    result = await automation_service.run_rule(engine, owner_id=owner_id, rule_id=rule_id)
    return AutomationRunResponse(rule_id=rule_id, status=result["status"], error=result.get("error"))
