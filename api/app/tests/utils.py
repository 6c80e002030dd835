"""Shared helpers for engine and API tests."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from app.schema.automation import ACTION_LIST, CONDITION_LIST
from app.services.automation_errors import IntegrationError
from app.services.integrations import EmailMessage, IntegrationRegistry
from app.services.rule_store import RuleDefinition


class ManualClock:
    """Sleep replacement whose timers only wake when ticked."""

    def __init__(self) -> None:
        self.requested: list[float] = []
        self._release: asyncio.Queue[None] = asyncio.Queue()

    async def sleep(self, seconds: float) -> None:
        self.requested.append(seconds)
        await self._release.get()

    def tick(self, count: int = 1) -> None:
        for _ in range(count):
            self._release.put_nowait(None)


@dataclass
class RecordingIntegrations:
    """Executors that record calls and fail on request."""

    calls: list[tuple[str, Any]] = field(default_factory=list)
    fail_endpoints: set[str] = field(default_factory=set)

    async def call(self, owner_id: uuid.UUID, integration: str, endpoint: str, params: dict[str, Any]) -> Any:
        self.calls.append(("api", (integration, endpoint, params)))
        if endpoint in self.fail_endpoints:
            raise IntegrationError(f"{integration} {endpoint} failed")
        return {"ok": True}

    async def send(self, owner_id: uuid.UUID, message: EmailMessage) -> None:
        self.calls.append(("email", message))

    async def create_event(self, owner_id: uuid.UUID, integration: str, params: dict[str, Any]) -> None:
        self.calls.append(("calendar", (integration, params)))

    async def write(self, owner_id: uuid.UUID, title: str, message: str) -> None:
        self.calls.append(("notification", (title, message)))

    def registry(self) -> IntegrationRegistry:
        return IntegrationRegistry(
            api_caller=self,
            email_sender=self,
            calendar_creator=self,
            notification_writer=self,
            api_integrations=frozenset({"todoist", "webhooks"}),
            calendar_integrations=frozenset({"google"}),
        )

    def endpoints(self) -> list[str]:
        return [payload[1] for kind, payload in self.calls if kind == "api"]

    def of_kind(self, kind: str) -> list[Any]:
        return [payload for recorded, payload in self.calls if recorded == kind]


def make_rule(
    *,
    conditions: list[dict[str, Any]] | None = None,
    actions: list[dict[str, Any]] | None = None,
    enabled: bool = True,
    owner_id: uuid.UUID | None = None,
    rule_id: uuid.UUID | None = None,
) -> RuleDefinition:
    return RuleDefinition(
        id=rule_id or uuid.uuid4(),
        owner_id=owner_id or uuid.uuid4(),
        name="test rule",
        enabled=enabled,
        conditions=CONDITION_LIST.validate_python(conditions or []),
        actions=ACTION_LIST.validate_python(actions or []),
    )


async def eventually(predicate: Callable[[], Any], *, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll an (optionally async) predicate until it is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)
