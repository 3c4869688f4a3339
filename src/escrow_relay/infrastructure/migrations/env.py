"""Alembic environment for the escrow relay schema.

The URL always comes from ``Settings.database_url``; the ini file only
contributes logging. Offline mode emits SQL, online mode runs through an
async engine so asyncpg and aiosqlite URLs both work unchanged. SQLite
targets get batch mode so column alterations survive its limited ALTER.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from escrow_relay.config import get_settings
from escrow_relay.infrastructure.database.orm_models import Base

alembic_cfg = context.config
alembic_cfg.set_main_option("sqlalchemy.url", get_settings().database_url)

if alembic_cfg.config_file_name:
    fileConfig(alembic_cfg.config_file_name)


def _configure(**options) -> None:
    context.configure(target_metadata=Base.metadata, compare_type=True, **options)
    with context.begin_transaction():
        context.run_migrations()


def _migrate_with(connection: Connection) -> None:
    _configure(
        connection=connection,
        render_as_batch=connection.dialect.name == "sqlite",
    )


async def _migrate_online() -> None:
    engine = async_engine_from_config(
        alembic_cfg.get_section(alembic_cfg.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate_with)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    _configure(
        url=alembic_cfg.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
else:
    asyncio.run(_migrate_online())
