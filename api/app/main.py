"""FastAPI application entrypoint, engine lifecycle, and health reporting.

Invariants:
- The rule engine is started once per process and stopped on shutdown so
  in-flight executions finish and log before exit.
- Email and calendar executors come from the host application through
  :func:`register_executors`; without them those action types are rejected.
"""

import asyncio
import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.api.router import api_router
from app.core.config import settings
from app.db.session import async_session
from app.services.automation_errors import (
    AutomationError,
    IntegrationConfigurationError,
    PersistenceError,
    RuleNotFoundError,
    RuleValidationError,
)
from app.services.execution_monitor import summarize
from app.services.integrations import CalendarCreator, EmailSender, build_integration_registry
from app.services.rule_engine import RuleEngine, build_rule_engine
from app.services.task_queue import task_queue

logger = logging.getLogger("app.main")

app = FastAPI(title=settings.app_name)
app.include_router(api_router, prefix=settings.api_prefix)
app.state.email_sender = None
app.state.calendar_creator = None

ERROR_STATUS: dict[type[AutomationError], int] = {
    RuleNotFoundError: status.HTTP_404_NOT_FOUND,
    RuleValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    IntegrationConfigurationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PersistenceError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def register_executors(
    target: FastAPI,
    *,
    email_sender: EmailSender | None = None,
    calendar_creator: CalendarCreator | None = None,
) -> None:
    """Install host-provided email and calendar executors; call before startup."""
    if email_sender is not None:
        target.state.email_sender = email_sender
    if calendar_creator is not None:
        target.state.calendar_creator = calendar_creator


def create_rule_engine(target: FastAPI) -> RuleEngine:
    integrations = build_integration_registry(
        async_session,
        email_sender=getattr(target.state, "email_sender", None),
        calendar_creator=getattr(target.state, "calendar_creator", None),
    )
    return build_rule_engine(async_session, integrations=integrations)


@app.exception_handler(AutomationError)
async def _automation_error_handler(request: Request, exc: AutomationError) -> JSONResponse:
    """Map engine errors onto HTTP responses."""
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error("Automation request failed: %s", exc.message)
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


@app.on_event("startup")
async def _start_rule_engine() -> None:
    """Build the rule engine and, unless disabled, load and arm rules."""
    engine = create_rule_engine(app)
    app.state.rule_engine = engine
    if settings.automation_autostart and settings.environment.lower() != "test":
        await engine.start()


@app.on_event("shutdown")
async def _stop_rule_engine() -> None:
    engine = getattr(app.state, "rule_engine", None)
    if engine is not None and engine.started:
        await engine.stop()


@app.get("/health", tags=["internal"])
@app.get(f"{settings.api_prefix}/health", tags=["internal"])
async def health(request: Request) -> dict[str, Any]:
    """Return engine state, execution telemetry, and queue status."""
    engine = getattr(request.app.state, "rule_engine", None)
    if engine is None:
        return {"status": "starting"}
    snapshot = await engine.dispatcher.monitor.snapshot()
    telemetry = summarize(snapshot)
    degraded = bool(telemetry["failing_rules"]) or (engine.started and not engine.state()["subscribed"])
    return {
        "status": "degraded" if degraded else "ok",
        "engine": engine.state(),
        "executions": telemetry,
        "queue": await asyncio.to_thread(task_queue.snapshot),
    }
