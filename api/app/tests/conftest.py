"""Shared pytest fixtures for engine, API tests, and database isolation."""

from __future__ import annotations

import os

os.environ.setdefault("ENVIRONMENT", "test")

import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.core.security import create_access_token
from app.db.base import Base
from app.main import app
from app.services.change_feed import ChangeFeed
from app.services.rule_engine import build_rule_engine
from app.tests.utils import ManualClock, RecordingIntegrations


@pytest_asyncio.fixture()
async def session_factory(tmp_path) -> async_sessionmaker[AsyncSession]:
    database_url = settings.test_database_url or f"sqlite+aiosqlite:///{tmp_path / 'automation.db'}"
    engine = create_async_engine(database_url, future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()


@pytest.fixture()
def integrations() -> RecordingIntegrations:
    return RecordingIntegrations()


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def feed() -> ChangeFeed:
    return ChangeFeed()


@pytest_asyncio.fixture()
async def rule_engine(session_factory, integrations, clock, feed):
    from app.services.schedule_service import RuleScheduler

    engine = build_rule_engine(
        session_factory,
        integrations=integrations.registry(),
        scheduler=RuleScheduler(sleep=clock.sleep),
        source=feed,
    )
    await engine.start()
    try:
        yield engine
    finally:
        await engine.stop()


@pytest.fixture()
def owner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest_asyncio.fixture()
async def client(rule_engine, owner_id) -> AsyncClient:
    app.state.rule_engine = rule_engine
    headers = {"Authorization": f"Bearer {create_access_token(str(owner_id))}"}
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver", headers=headers
    ) as async_client:
        yield async_client
    app.state.rule_engine = None
