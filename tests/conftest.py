"""Shared test fixtures.

Each test gets a throwaway SQLite file (via aiosqlite) with the schema
created from the ORM metadata. Redis is never initialised here: services
receive ``None`` (or an AsyncMock) and rate limiting is bypassed.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from falvia.accounts.service import create_account
from falvia.config import get_settings
from falvia.database import close_db, get_engine, get_session_factory, init_db
from falvia.db.base import Base
from falvia.db.models import Account

NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _test_settings(tmp_path, monkeypatch):
    """Point settings at a per-test SQLite file."""
    monkeypatch.setenv("FALVIA_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'falvia_test.db'}")
    monkeypatch.setenv("FALVIA_LOG_FORMAT", "console")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """Initialise the engine and create all tables."""
    await init_db(get_settings().database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(database) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def account(db_session: AsyncSession) -> Account:
    """A fresh account with zero balance, detached so rollbacks never expire it."""
    created = await create_account(db_session, "Ayla", now=NOW)
    db_session.expunge(created)
    return created


@pytest_asyncio.fixture
async def other_account(db_session: AsyncSession) -> Account:
    """A second account, used as referrer or referee."""
    created = await create_account(db_session, "Deniz", now=NOW)
    db_session.expunge(created)
    return created


@pytest_asyncio.fixture
async def client(database) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client over the ASGI app (lifespan not run; DB initialised above)."""
    from falvia.main import create_app

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
