"""Side-effect executors invoked by automation actions.

The protocols describe what the action dispatcher needs; email and calendar
executors are supplied by the subsystems that own those providers.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.models.notification import Notification
from app.schema.automation import ApiAction, CalendarAction, EmailAction
from app.services.automation_errors import IntegrationConfigurationError, IntegrationError

logger = logging.getLogger("app.services.integrations")


@dataclass(slots=True)
class EmailMessage:
    to: str
    subject: str
    content: str


class ApiCaller(Protocol):
    async def call(
        self, owner_id: uuid.UUID, integration: str, endpoint: str, params: dict[str, Any]
    ) -> Any: ...


class EmailSender(Protocol):
    async def send(self, owner_id: uuid.UUID, message: EmailMessage) -> None: ...


class CalendarCreator(Protocol):
    async def create_event(self, owner_id: uuid.UUID, integration: str, params: dict[str, Any]) -> None: ...


class NotificationWriter(Protocol):
    async def write(self, owner_id: uuid.UUID, title: str, message: str) -> None: ...


class HttpApiCaller:
    """Calls generic HTTP APIs declared in AUTOMATION_API_INTEGRATIONS."""

    def __init__(
        self,
        integrations: dict[str, dict[str, Any]],
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._integrations = integrations
        self._timeout = timeout
        self._transport = transport

    @property
    def integration_names(self) -> frozenset[str]:
        return frozenset(self._integrations)

    async def call(
        self, owner_id: uuid.UUID, integration: str, endpoint: str, params: dict[str, Any]
    ) -> Any:
        config = self._integrations.get(integration)
        if not config:
            raise IntegrationConfigurationError(f"api_integration_not_registered:{integration}")
        method = str(config.get("method") or "POST").upper()
        url = f"{str(config['base_url']).rstrip('/')}/{endpoint.lstrip('/')}"
        headers = dict(config.get("headers") or {})
        request_kwargs: dict[str, Any] = {"headers": headers}
        if method in {"GET", "DELETE"}:
            request_kwargs["params"] = params
        else:
            request_kwargs["json"] = params
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(method, url, **request_kwargs)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise IntegrationError(
                f"{integration} {method} {endpoint} failed with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise IntegrationError(f"{integration} {method} {endpoint} failed: {exc}") from exc
        logger.info("API action %s %s for owner %s -> %s", integration, endpoint, owner_id, response.status_code)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text


class DatabaseNotificationWriter:
    """Stores automation notifications in the shared notifications table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def write(self, owner_id: uuid.UUID, title: str, message: str) -> None:
        try:
            async with self._session_factory() as session:
                session.add(Notification(owner_id=owner_id, title=title, message=message, type="automation"))
                await session.commit()
        except SQLAlchemyError as exc:
            raise IntegrationError(f"notification_write_failed: {exc}") from exc


@dataclass
class IntegrationRegistry:
    """Executors available to the dispatcher plus the integration names they serve.

    A name set of ``None`` means the executor accepts any integration name.
    """
    api_caller: ApiCaller | None = None
    email_sender: EmailSender | None = None
    calendar_creator: CalendarCreator | None = None
    notification_writer: NotificationWriter | None = None
    api_integrations: frozenset[str] | None = None
    calendar_integrations: frozenset[str] | None = field(default=None)

    def validate_actions(self, actions: Iterable[Any]) -> None:
        """Raise IntegrationConfigurationError for actions that could never run."""
        for index, action in enumerate(actions):
            if isinstance(action, ApiAction):
                if self.api_caller is None:
                    raise IntegrationConfigurationError(f"actions[{index}]: API integration not configured")
                if self.api_integrations is not None and action.integration not in self.api_integrations:
                    raise IntegrationConfigurationError(
                        f"actions[{index}]: api_integration_not_registered:{action.integration}"
                    )
            elif isinstance(action, EmailAction):
                if self.email_sender is None:
                    raise IntegrationConfigurationError(f"actions[{index}]: Email integration not configured")
            elif isinstance(action, CalendarAction):
                if self.calendar_creator is None:
                    raise IntegrationConfigurationError(f"actions[{index}]: Calendar integration not configured")
                if (
                    self.calendar_integrations is not None
                    and action.integration.lower() not in self.calendar_integrations
                ):
                    raise IntegrationConfigurationError(
                        f"actions[{index}]: calendar_integration_not_registered:{action.integration}"
                    )


def build_integration_registry(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    email_sender: EmailSender | None = None,
    calendar_creator: CalendarCreator | None = None,
) -> IntegrationRegistry:
    """Assemble the default registry from settings."""
    api_caller = None
    api_names: frozenset[str] | None = None
    if settings.automation_api_integrations:
        http_caller = HttpApiCaller(
            settings.automation_api_integrations,
            timeout=settings.automation_api_timeout_seconds,
        )
        api_caller = http_caller
        api_names = http_caller.integration_names
    return IntegrationRegistry(
        api_caller=api_caller,
        email_sender=email_sender,
        calendar_creator=calendar_creator,
        notification_writer=DatabaseNotificationWriter(session_factory),
        api_integrations=api_names,
        calendar_integrations=frozenset(settings.automation_calendar_integrations),
    )
