"""Database connection management using asyncpg."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import asyncpg

from fpl_live.config import Settings, get_settings
from fpl_live.errors import StorageConnectionFailed

logger = logging.getLogger(__name__)


@asynccontextmanager
async def connect(
    settings: Settings | None = None,
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Open one database connection for a sync run and always close it.

    The live sync is a short-lived process, so it uses a single connection
    instead of a pool. Connection problems are raised as
    StorageConnectionFailed; errors inside the block propagate unchanged.
    """
    settings = settings or get_settings()
    db_url = settings.db_connection_string

    if not db_url:
        raise StorageConnectionFailed(
            "Database connection string not configured. "
            "Set DATABASE_URL or SQL_SERVER and SQL_DATABASE environment variables."
        )

    logger.info(f"Connecting to database {settings.db_display_name}")
    try:
        conn = await asyncpg.connect(
            db_url,
            timeout=settings.db_connect_timeout,
            command_timeout=settings.db_command_timeout,
            ssl="require" if settings.sql_encrypt else None,
        )
    except (OSError, TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
        raise StorageConnectionFailed(
            f"Could not connect to {settings.db_display_name}: {e}"
        ) from e

    try:
        yield conn
    finally:
        await conn.close()
        logger.info("Database connection closed")
