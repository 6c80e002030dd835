"""Action dispatch for automation rules.

Invariants:
- Actions run strictly in list order; the first failure aborts the rest.
- Completed actions are never rolled back.
- Every execution attempt writes exactly one execution log entry, and no
  exception escapes to the scheduler or event matcher.
- Only integration failures are retried, and only under a configured RetryPolicy.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from tenacity import AsyncRetrying, RetryError, retry_if_result, stop_after_attempt, wait_fixed

from app.core.config import settings
from app.models.automation import AutomationLogStatus
from app.schema.automation import ApiAction, CalendarAction, EmailAction, NotificationAction
from app.services.automation_errors import (
    AutomationError,
    IntegrationConfigurationError,
    IntegrationError,
    PersistenceError,
)
from app.services.execution_log_service import ExecutionLogger
from app.services.execution_monitor import ExecutionMonitor
from app.services.integrations import EmailMessage, IntegrationRegistry
from app.services.rule_store import RuleDefinition
from app.services.template_service import interpolate, interpolate_params

logger = logging.getLogger("app.services.automation_engine")

ActionHandler = Callable[[IntegrationRegistry, uuid.UUID, Any, dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """How many times a failed execution is re-attempted; one attempt means no retries."""
    max_attempts: int = 1
    backoff_seconds: float = 0.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, settings.automation_retry_max_attempts),
            backoff_seconds=max(0.0, settings.automation_retry_backoff_seconds),
        )


@dataclass(frozen=True)
class ConcurrencyLimit:
    """Upper bound on simultaneous executions; ``None`` is unbounded."""
    max_concurrent: int | None = None

    @classmethod
    def from_settings(cls) -> "ConcurrencyLimit":
        value = settings.automation_max_concurrent_executions
        return cls(max_concurrent=value if value and value > 0 else None)


@dataclass(frozen=True)
class ExecutionResult:
    rule_id: uuid.UUID
    status: AutomationLogStatus
    error: str | None = None
    attempts: int = 1
    retryable: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == AutomationLogStatus.SUCCESS


async def _execute_api_action(
    integrations: IntegrationRegistry, owner_id: uuid.UUID, action: ApiAction, context: dict[str, Any]
) -> None:
    if integrations.api_caller is None:
        raise IntegrationConfigurationError("API integration not configured")
    params = interpolate_params(action.parameters, context)
    await integrations.api_caller.call(owner_id, action.integration, action.endpoint, params)


async def _execute_email_action(
    integrations: IntegrationRegistry, owner_id: uuid.UUID, action: EmailAction, context: dict[str, Any]
) -> None:
    if integrations.email_sender is None:
        raise IntegrationConfigurationError("Email integration not configured")
    params = interpolate_params(action.parameters.model_dump(), context)
    message = EmailMessage(
        to=params["to"],
        subject=params["subject"],
        content=interpolate(action.template, context),
    )
    await integrations.email_sender.send(owner_id, message)


async def _execute_calendar_action(
    integrations: IntegrationRegistry, owner_id: uuid.UUID, action: CalendarAction, context: dict[str, Any]
) -> None:
    if integrations.calendar_creator is None:
        raise IntegrationConfigurationError("Calendar integration not configured")
    params = interpolate_params(action.parameters, context)
    await integrations.calendar_creator.create_event(owner_id, action.integration, params)


async def _execute_notification_action(
    integrations: IntegrationRegistry, owner_id: uuid.UUID, action: NotificationAction, context: dict[str, Any]
) -> None:
    if integrations.notification_writer is None:
        raise IntegrationConfigurationError("Notification writer not configured")
    await integrations.notification_writer.write(
        owner_id,
        interpolate(action.title_template, context),
        interpolate(action.message_template, context),
    )


ACTION_HANDLERS: dict[str, ActionHandler] = {
    "api": _execute_api_action,
    "email": _execute_email_action,
    "calendar": _execute_calendar_action,
    "notification": _execute_notification_action,
}


class ActionDispatcher:
    """Executes a rule's actions and records the outcome."""

    def __init__(
        self,
        *,
        integrations: IntegrationRegistry,
        execution_logger: ExecutionLogger,
        monitor: ExecutionMonitor | None = None,
        retry_policy: RetryPolicy | None = None,
        concurrency: ConcurrencyLimit | None = None,
    ) -> None:
        self.integrations = integrations
        self.execution_logger = execution_logger
        self.monitor = monitor or ExecutionMonitor()
        self.retry_policy = retry_policy or RetryPolicy()
        self.concurrency = concurrency or ConcurrencyLimit()
        self._slots = (
            asyncio.Semaphore(self.concurrency.max_concurrent) if self.concurrency.max_concurrent else None
        )

    async def execute(
        self, rule: RuleDefinition, context: dict[str, Any], *, trigger: str = "manual"
    ) -> ExecutionResult:
        """Run the rule's actions under the retry policy and return the final result."""
        slot = self._slots if self._slots is not None else contextlib.nullcontext()
        async with slot:
            if self.retry_policy.max_attempts <= 1:
                return await self._attempt(rule, context, trigger=trigger, attempt=1)
            return await self._execute_with_retries(rule, context, trigger=trigger)

    async def _execute_with_retries(
        self, rule: RuleDefinition, context: dict[str, Any], *, trigger: str
    ) -> ExecutionResult:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.retry_policy.max_attempts),
                wait=wait_fixed(self.retry_policy.backoff_seconds),
                retry=retry_if_result(lambda result: result.retryable),
            ):
                with attempt:
                    result = await self._attempt(
                        rule, context, trigger=trigger, attempt=attempt.retry_state.attempt_number
                    )
                if not attempt.retry_state.outcome.failed:
                    attempt.retry_state.set_result(result)
        except RetryError as exc:
            logger.warning("Rule %s failed after %s attempt(s)", rule.id, self.retry_policy.max_attempts)
            return exc.last_attempt.result()
        return result

    async def _attempt(
        self, rule: RuleDefinition, context: dict[str, Any], *, trigger: str, attempt: int
    ) -> ExecutionResult:
        rule_key = str(rule.id)
        await self.monitor.record_start(rule_key, trigger=trigger)
        start = time.monotonic()
        error: str | None = None
        retryable = False
        try:
            await self._run_actions(rule, context)
        except IntegrationError as exc:
            error = exc.message
            retryable = True
        except AutomationError as exc:
            error = exc.message
        except Exception as exc:  # noqa: BLE001
            logger.exception("Automation execution failed for %s", rule.id)
            error = str(exc) or exc.__class__.__name__
        status = AutomationLogStatus.ERROR if error else AutomationLogStatus.SUCCESS
        latency_ms = (time.monotonic() - start) * 1000
        await self.monitor.record_finish(rule_key, succeeded=error is None, latency_ms=latency_ms, error=error)
        try:
            await self.execution_logger.append(rule, status=status, context=context, error=error)
        except PersistenceError as exc:
            logger.exception("Could not record execution of rule %s: %s", rule.id, exc.message)
        return ExecutionResult(rule_id=rule.id, status=status, error=error, attempts=attempt, retryable=retryable)

    async def _run_actions(self, rule: RuleDefinition, context: dict[str, Any]) -> None:
        if not rule.actions:
            logger.debug("Rule %s has no actions", rule.id)
        for index, action in enumerate(rule.actions):
            handler = ACTION_HANDLERS.get(action.type)
            if not handler:
                raise IntegrationConfigurationError(f"unsupported_action:{action.type}")
            try:
                await handler(self.integrations, rule.owner_id, action, context)
            except AutomationError:
                logger.info("Action %s (%s) of rule %s failed; aborting", index, action.type, rule.id)
                raise
