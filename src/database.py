"""
Database engine and sessions for the integration gateway.

One lazily-built async engine per process. Request handlers get a session via
get_db (commit on success, rollback on error); workers and fire-and-forget
deliveries open their own with async_session_factory() so they never share a
session with the request that spawned them.

Sessions use expire_on_commit=False: delivery code reads ORM attributes after
commit, and lazy refresh is not available under asyncio.
"""
import logging
from typing import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

_engine = None
_async_session_factory = None


class Base(DeclarativeBase):
    pass


def _engine_options(settings) -> dict:
    """Pool sizing applies to server databases only; sqlite (local runs, tests) uses its default pool."""
    options = {"echo": settings.log_level.upper() == "DEBUG"}
    if make_url(settings.database_url).get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
        )
    return options


def _get_engine():
    global _engine
    if _engine is None:
        from src.config import get_settings
        settings = get_settings()
        _engine = create_async_engine(settings.database_url, **_engine_options(settings))
        logger.info("Database engine created (%s)", make_url(settings.database_url).get_backend_name())
    return _engine


def _get_session_factory():
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            _get_engine(), class_=AsyncSession, expire_on_commit=False
        )
    return _async_session_factory


def async_session_factory() -> AsyncSession:
    """Session for work outside a request (retry worker, spawned deliveries)."""
    return _get_session_factory()()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session. Whatever the handler leaves uncommitted is committed on exit."""
    async with _get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def dispose_engine() -> None:
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _async_session_factory = None
