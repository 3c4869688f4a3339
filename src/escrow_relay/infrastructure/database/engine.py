"""Async engine and per-request sessions for the escrow record store.

One engine and one sessionmaker live for the process. They are created on
first use and torn down by ``close_db`` from the app lifespan.

PostgreSQL through asyncpg is the deployed backend. ``sqlite+aiosqlite``
URLs work for local runs and skip the pool sizing options, which the
SQLite dialect rejects.

Routes never touch this module directly; they depend on
``api.deps.get_db_session``, which wraps ``get_async_session``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from escrow_relay.config import get_settings
from escrow_relay.domain.exceptions import RecordStoreError
from escrow_relay.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from escrow_relay.config import Settings

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(settings: Settings) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.db_echo_sql}
    if not settings.database_url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_pre_ping=True,
        )
    return options


def _get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(settings.database_url, **_engine_options(settings))
        logger.info("database.engine_created", backend=_engine.dialect.name)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the process-wide sessionmaker, building it on first call."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=_get_engine(), expire_on_commit=False, autoflush=False
        )
    return _session_factory


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield one session per request; commit when the handler returns, roll back if it raises.

    A failed commit surfaces as RecordStoreError.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise RecordStoreError(f"Record store failure: {exc}") from exc
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Build the engine at startup.

    Development runs create missing tables directly. Every other
    environment is expected to be migrated with Alembic beforehand.
    """
    from escrow_relay.infrastructure.database.orm_models import Base

    engine = _get_engine()
    if not get_settings().is_development:
        logger.info("database.create_all_skipped", environment=get_settings().app_env)
        return

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database.tables_created")


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("database.engine_disposed")
