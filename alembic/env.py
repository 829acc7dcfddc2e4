"""Migrations for Groundwave's PostgreSQL schema.

``alembic upgrade head`` connects through asyncpg using ``DATABASE_URL``;
``--sql`` prints the statements instead.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config
from sqlmodel import SQLModel

from groundwave.config import settings
from groundwave.db import models  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

config.set_main_option("sqlalchemy.url", settings.database_url)

MIGRATION_OPTIONS = {
    "target_metadata": SQLModel.metadata,
    "compare_type": True,
}


def _migrate(**options) -> None:
    context.configure(**MIGRATION_OPTIONS, **options)
    with context.begin_transaction():
        context.run_migrations()


def _migrate_connection(connection: Connection) -> None:
    _migrate(connection=connection)


async def _migrate_online() -> None:
    engine = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate_connection)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    _migrate(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
else:
    asyncio.run(_migrate_online())
