"""Service test fixtures — async DB and FastAPI test client.

Invariants:
    - Every test gets a fresh in-memory SQLite database
    - get_db dependency overridden to use test DB session
    - db_manager patched so SqlAutomationStore (which bypasses get_db) hits the test DB

Design Decisions:
    - SQLite in-memory: fast, no external dependency, sufficient for route tests
      (PostgreSQL-specific features not exercised here)
"""

import uuid

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncSession, create_async_engine, async_sessionmaker,
)
from httpx import ASGITransport, AsyncClient

from taplink.db.base import Base
from taplink.infrastructure.database import get_db, DatabaseSessionManager
from taplink.models.automation import Automation
import taplink.infrastructure.database as db_module
import taplink.models  # noqa: F401
from taplink.main import app
from tests.services.fakes import FakeHost


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )


@pytest.fixture
async def test_db(test_session_factory):
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def fake_manager(test_engine, test_session_factory, monkeypatch):
    """DatabaseSessionManager bound to the test engine, installed as db_manager."""
    manager = DatabaseSessionManager.__new__(DatabaseSessionManager)
    manager.engine = test_engine
    manager._session_factory = test_session_factory
    monkeypatch.setattr(db_module, "db_manager", manager)
    return manager


@pytest.fixture
async def client(test_session_factory, fake_manager):
    """FastAPI test client with DB dependency overridden."""
    async def override_get_db():
        async with test_session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
async def seed_automation(test_db):
    """Insert a two-step automation (sms + webhook) and return it."""
    automation = Automation(
        id=uuid.uuid4(),
        title="Leaving Work",
        description="Tell home I'm on my way",
        steps=[
            {"id": "s1", "type": "sms", "config": {"phoneNumber": "+15550100", "message": "On my way"}},
            {"id": "s2", "type": "webhook", "config": {"url": "https://hooks.example/x"}},
        ],
        tags=["commute"],
    )
    test_db.add(automation)
    await test_db.commit()
    await test_db.refresh(automation)
    return automation


@pytest.fixture
def host():
    return FakeHost()
