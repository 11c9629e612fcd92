"""asyncpg pool shared by the booking API and the dispatch worker.

Connection-level failures leave this module as ``StorageUnavailable`` so
callers can tell "the database is down" apart from "this statement is
wrong" without importing asyncpg.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import asyncpg
import structlog

from room_booking.config import settings
from room_booking.models.exceptions import StorageUnavailable

logger = structlog.get_logger()

_pool: asyncpg.Pool | None = None

CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    TimeoutError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.TooManyConnectionsError,
    asyncpg.exceptions.AdminShutdownError,
)


def _redact(dsn: str) -> str:
    return dsn.split("@")[-1]


async def create_pool(dsn: str | None = None) -> asyncpg.Pool:
    """Open a pool against ``dsn`` (``settings.database_url`` by default).

    Sessions run in UTC so TIMESTAMPTZ values and ``NOW()`` compare cleanly
    with the UTC datetimes the service passes in.
    """
    dsn = dsn or settings.database_url
    logger.info(
        "creating_database_pool",
        database=_redact(dsn),
        min_size=settings.database_pool_min_size,
        max_size=settings.database_pool_max_size,
    )

    pool = await asyncpg.create_pool(
        dsn=dsn,
        min_size=settings.database_pool_min_size,
        max_size=settings.database_pool_max_size,
        command_timeout=30.0,
        server_settings={
            "application_name": settings.service_name,
            "timezone": "UTC",
        },
    )

    if pool is None:
        raise StorageUnavailable("Failed to create database pool")

    logger.info("database_pool_created", database=_redact(dsn))
    return pool


async def get_pool() -> asyncpg.Pool:
    """Return the process-wide pool, creating it on first use.

    Raises:
        StorageUnavailable: If the database cannot be reached
    """
    global _pool
    if _pool is None:
        try:
            _pool = await create_pool()
        except CONNECTION_ERRORS as e:
            raise StorageUnavailable(f"Cannot connect to database: {e}") from e
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        logger.info("closing_database_pool")
        await _pool.close()
        _pool = None
        logger.info("database_pool_closed")


@asynccontextmanager
async def get_connection() -> AsyncIterator[asyncpg.Connection]:
    """Borrow a connection from the pool.

    Raises:
        StorageUnavailable: If the database is unreachable or the connection drops

    Example:
        async with get_connection() as conn:
            due = await conn.fetchval("SELECT COUNT(*) FROM email_outbox WHERE status = 'PENDING'")
    """
    pool = await get_pool()
    try:
        async with pool.acquire() as connection:
            yield connection
    except CONNECTION_ERRORS as e:
        raise StorageUnavailable(f"Database connection lost: {e}") from e


@asynccontextmanager
async def transaction() -> AsyncIterator[asyncpg.Connection]:
    """Borrow a connection with an open transaction.

    Commits when the block exits normally and rolls back on any exception,
    so a booking row and its outbox jobs are written together or not at all.
    """
    async with get_connection() as conn:
        async with conn.transaction():
            yield conn


async def ping() -> None:
    """Round-trip a trivial query.

    Raises:
        StorageUnavailable: If the database does not answer
    """
    async with get_connection() as conn:
        await conn.fetchval("SELECT 1")
