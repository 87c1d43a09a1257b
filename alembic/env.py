"""Alembic environment for the alert ledger schema.

Reads the ledger URL from SQLALCHEMY_DATABASE_URL or ALERT_LEDGER_URL
(falling back to alembic.ini) and migrates online through the same async
drivers the application uses.
"""

from __future__ import annotations

import asyncio
import os
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from whale_observer.storage.database import normalize_async_database_url
from whale_observer.storage.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

load_dotenv(override=False)


def _ledger_url() -> str:
    url = (
        os.environ.get("SQLALCHEMY_DATABASE_URL")
        or os.environ.get("ALERT_LEDGER_URL")
        or config.get_main_option("sqlalchemy.url")
    )
    if not url:
        raise RuntimeError("No database URL configured for migrations")
    if url.startswith(("redis://", "rediss://")):
        raise RuntimeError("ALERT_LEDGER_URL points at Redis; there is nothing to migrate")
    return normalize_async_database_url(url)


def _apply(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=Base.metadata)
    with context.begin_transaction():
        context.run_migrations()


async def _migrate() -> None:
    engine = create_async_engine(_ledger_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_apply)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    raise RuntimeError("Offline (--sql) migrations are not supported for the alert ledger")

asyncio.run(_migrate())
