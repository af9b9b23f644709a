"""asyncpg pool lifecycle and transient-failure handling.

The store only ever talks to Postgres through the pool created here. Reads
are wrapped in ``with_retry``; writes are not, since a retried insert after
an ambiguous failure could duplicate a message.
"""

from __future__ import annotations

import asyncio
import functools
import random

from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

import asyncpg

from concierge.utils.logger import logger

P = ParamSpec("P")
T = TypeVar("T")

# =============================================================================
# Errors
# =============================================================================


class PoolError(Exception):
    """The pool could not be created or could not hand out a connection."""


class ConnectionPoolExhausted(PoolError):
    pass


#: Failures worth another attempt on a read.
TRANSIENT_DB_ERRORS: tuple[type[Exception], ...] = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    ConnectionPoolExhausted,
)

# =============================================================================
# Pool lifecycle
# =============================================================================


async def create_database_pool(
    dsn: str,
    *,
    min_size: int = 2,
    max_size: int = 10,
    command_timeout: float = 60.0,
    connection_timeout: float = 10.0,
    statement_cache_size: int = 100,
    max_inactive_connection_lifetime: float = 300.0,
) -> asyncpg.Pool:
    """Open the pool, bounding both pool creation and every statement.

    Each new connection gets ``statement_timeout`` and ``lock_timeout`` equal
    to ``command_timeout`` so a stuck query cannot pin a connection forever.

    Raises:
        ConnectionPoolExhausted: the database is unreachable or too slow.
    """
    timeout_ms = int(command_timeout * 1000)

    async def prepare(conn: asyncpg.Connection) -> None:
        await conn.execute(f"SET statement_timeout = '{timeout_ms}'")
        await conn.execute(f"SET lock_timeout = '{timeout_ms}'")

    pending = asyncpg.create_pool(
        dsn=dsn,
        min_size=min_size,
        max_size=max_size,
        command_timeout=command_timeout,
        statement_cache_size=statement_cache_size,
        max_inactive_connection_lifetime=max_inactive_connection_lifetime,
        init=prepare,
    )
    try:
        pool = await asyncio.wait_for(pending, timeout=connection_timeout)
    except TimeoutError as e:
        raise ConnectionPoolExhausted(f"No database connection within {connection_timeout}s") from e
    except (OSError, asyncpg.PostgresError) as e:
        raise ConnectionPoolExhausted(f"Database unreachable: {e}") from e

    if pool is None:
        raise ConnectionPoolExhausted("asyncpg returned no pool")
    logger.info("Database pool open", min_size=min_size, max_size=max_size)
    return pool


async def graceful_pool_close(pool: asyncpg.Pool, timeout: float = 10.0) -> None:
    """Let in-flight turns release their connections, then close."""
    deadline = asyncio.get_running_loop().time() + timeout
    while (busy := pool.get_size() - pool.get_idle_size()) > 0:
        if asyncio.get_running_loop().time() >= deadline:
            logger.warning("Closing database pool with busy connections", busy=busy)
            break
        await asyncio.sleep(0.1)
    await pool.close()


async def check_pool_health(pool: asyncpg.Pool) -> dict[str, Any]:
    """Round-trip ``SELECT 1`` and report pool occupancy."""
    healthy = False
    try:
        async with pool.acquire(timeout=5.0) as conn:
            healthy = await conn.fetchval("SELECT 1") == 1
    except (TimeoutError, OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
        logger.warning("Database health check failed", error=str(e))

    size, idle = pool.get_size(), pool.get_idle_size()
    return {
        "healthy": healthy,
        "pool_size": size,
        "free_connections": idle,
        "used_connections": size - idle,
    }


# =============================================================================
# Retry
# =============================================================================


def _backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    return min(base_delay * 2**attempt + random.uniform(0, base_delay), max_delay)  # noqa: S311


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 5.0,
    retryable_exceptions: tuple[type[Exception], ...] = TRANSIENT_DB_ERRORS,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Retry an idempotent coroutine with jittered exponential backoff.

    Only for reads. The final failure is re-raised unchanged.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    attempt += 1
                    if attempt >= max_attempts:
                        logger.error(
                            "Database read gave up", operation=func.__qualname__, attempts=attempt, error=str(e)
                        )
                        raise
                    delay = _backoff(attempt - 1, base_delay, max_delay)
                    logger.warning(
                        "Retrying database read",
                        operation=func.__qualname__,
                        attempt=attempt,
                        delay_s=round(delay, 2),
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
