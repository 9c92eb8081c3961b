"""Alembic environment for the mempool tracker schema.

The connection URL comes from ``DATABASE_URL`` (a local .env file is read
first), falling back to ``sqlalchemy.url`` in alembic.ini. Online migrations
run over the same async drivers the monitor uses.
"""

from __future__ import annotations

import asyncio
import os
from logging.config import fileConfig
from typing import Any

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import Connection, pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from mempool_tracker.storage.database import to_async_url
from mempool_tracker.storage.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

load_dotenv(override=False)

_env_url = os.environ.get("DATABASE_URL")
if _env_url:
    config.set_main_option("sqlalchemy.url", to_async_url(os.path.expandvars(_env_url)))


def _configure(is_sqlite: bool, **kwargs: Any) -> None:
    # SQLite has no ALTER for most constraints, so changes go through table copies.
    context.configure(target_metadata=Base.metadata, render_as_batch=is_sqlite, **kwargs)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting."""
    url = config.get_main_option("sqlalchemy.url") or ""
    _configure(
        url.startswith("sqlite"),
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )


def _run_on_connection(connection: Connection) -> None:
    _configure(connection.dialect.name == "sqlite", connection=connection, compare_type=True)


async def run_migrations_online() -> None:
    """Apply migrations through a throwaway async engine."""
    engine = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_on_connection)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
