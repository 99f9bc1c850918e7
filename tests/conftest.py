"""
Test configuration and fixtures.
Uses a file-backed SQLite database per test so background tasks with their own
sessions see committed rows. Redis and outbound HTTP are always mocked.
"""
import os

# Required settings must exist before any src module builds Settings
os.environ.setdefault("APP_SECRET_KEY", "test-app-secret-key-0123456789abcdef")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

import src.database as database
import src.models  # noqa: F401  (register all tables on Base.metadata)
from src.config import get_settings
from src.database import Base
from src.models.enums import UserRole
from src.models.ticket_reason import TicketReason
from src.models.user import User
from src.utils import background


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are cached; clear around each test so monkeypatch.setenv takes effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def mock_redis():
    """Mock for async Redis - heartbeats, alert cooldowns and readiness never hit a server."""
    redis_mock = AsyncMock()
    redis_mock.set = AsyncMock(return_value=True)
    redis_mock.get = AsyncMock(return_value=None)
    redis_mock.ping = AsyncMock(return_value=True)
    with patch("src.utils.heartbeat.get_redis", AsyncMock(return_value=redis_mock)):
        yield redis_mock


@pytest.fixture
async def session_factory(tmp_path):
    """
    Session factory bound to a fresh SQLite file, installed as the app's factory
    so get_db and every background session use it.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    with patch.object(database, "_async_session_factory", factory):
        yield factory
        # Background work must finish before the engine goes away
        if await background.drain(timeout=5):
            await background.cancel_all()

    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db):
    """Create and commit a staff user. created_at can be pinned to control routing order."""
    async def _make(role: str = UserRole.CS, is_active: bool = True, created_at=None, email=None):
        user = User(
            name=f"{role.title()} User",
            email=email or f"{uuid.uuid4().hex[:10]}@example.com",
            password_hash="x",
            role=role,
            is_active=is_active,
            created_at=created_at or datetime.now(timezone.utc),
        )
        db.add(user)
        await db.commit()
        return user
    return _make


@pytest.fixture
def make_reason(db):
    async def _make(category: str, default_assign_role=None, default_priority=None, name=None):
        reason = TicketReason(
            name=name or f"Reason {uuid.uuid4().hex[:8]}",
            category=category,
            default_assign_role=default_assign_role,
            default_priority=default_priority,
        )
        db.add(reason)
        await db.commit()
        return reason
    return _make


@pytest.fixture
def earlier():
    """Timestamp helper: earlier(10) is ten minutes ago."""
    def _earlier(minutes: int):
        return datetime.now(timezone.utc) - timedelta(minutes=minutes)
    return _earlier
