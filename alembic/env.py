"""
Alembic migration environment for PostureScope.

Runs migrations through the async engine the service uses at runtime.  The
database URL comes from ``Settings.DATABASE_URL`` unless one is passed on the
command line::

    alembic upgrade head
    alembic -x url=sqlite+aiosqlite:///./posturescope.db upgrade head
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from posturescope.config import get_settings
from posturescope.core.database import Base
from posturescope.models import PluginResultRecord, ReportRecord  # noqa: F401 -- registers tables

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

database_url: str = context.get_x_argument(as_dictionary=True).get(
    "url", get_settings().DATABASE_URL
)
config.set_main_option("sqlalchemy.url", database_url)

# SQLite cannot ALTER most constraints in place.
_render_as_batch: bool = database_url.startswith("sqlite")


def run_migrations_offline() -> None:
    """Emit migration SQL to stdout without connecting."""
    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=_render_as_batch,
    )

    with context.begin_transaction():
        context.run_migrations()


def _run_sync_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=_render_as_batch,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Apply migrations over a short-lived async engine."""
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(_run_sync_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
