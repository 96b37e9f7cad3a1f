from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from giftbridge_api.core.settings import settings

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def get_metadata():
    from giftbridge_api import models  # noqa: F401  (registers tables)
    from giftbridge_api.db.base import Base  # noqa: WPS433 (late import)

    return Base.metadata


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def run_migrations_offline():
    """Emit SQL for the gift code and checkout session schema without a connection."""
    context.configure(
        url=settings.database_url,
        target_metadata=get_metadata(),
        literal_binds=True,
        render_as_batch=_is_sqlite(settings.database_url),
    )

    with context.begin_transaction():
        context.run_migrations()


def _run_sync_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=get_metadata(),
        compare_type=True,
        render_as_batch=_is_sqlite(settings.database_url),
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online():
    """Migrate through the same async driver (asyncpg / aiosqlite) the API uses."""
    connectable = create_async_engine(settings.database_url, poolclass=pool.NullPool)

    async with connectable.connect() as connection:
        await connection.run_sync(_run_sync_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
