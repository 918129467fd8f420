"""
Database connection factory utilities for the whisky collection service.

Provides centralized management of the asynchronous PostgreSQL connection pool
with explicit lifecycle management. Connections are always borrowed through
`PoolManager.connection()`, which returns them to the pool on every exit path
(commit on success, rollback on error).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from psycopg import AsyncConnection
from psycopg_pool import AsyncConnectionPool

from whisky_api.config import Settings, get_settings
from whisky_api.utils.logging import get_logger

log = get_logger(__name__)


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a DSN string from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


def redacted_dsn(settings: Optional[Settings] = None) -> str:
    """DSN suitable for logs and CLI output (no password)."""
    settings = settings or get_settings()
    return f"postgresql://{settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name}"


def connection_kwargs(statement_timeout_ms: int) -> dict:
    """
    Extra keyword arguments passed to every pooled `AsyncConnection.connect`.

    A positive `statement_timeout_ms` becomes a server-side statement deadline.
    """
    if statement_timeout_ms <= 0:
        return {}
    return {"options": f"-c statement_timeout={int(statement_timeout_ms)}"}


class PoolManager:
    """
    Owns one `AsyncConnectionPool` and hands out scoped connections.

    The pool is created lazily and opened without waiting for its minimum size,
    so an unreachable database surfaces as a timeout on the first acquisition
    instead of blocking construction.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        dsn_override: Optional[str] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._dsn_override = dsn_override
        self._pool: Optional[AsyncConnectionPool] = None

    @property
    def acquire_timeout(self) -> float:
        return self._settings.db_connect_timeout_seconds

    def get_pool(self) -> AsyncConnectionPool:
        """
        Get or create the asynchronous connection pool.

        Returns
        -------
        AsyncConnectionPool
            The managed pool instance (not yet opened).
        """
        if self._pool is None:
            settings = self._settings
            self._pool = AsyncConnectionPool(
                conninfo=self._dsn_override or build_dsn(settings),
                min_size=settings.db_pool_min_size,
                max_size=settings.db_pool_max_size,
                kwargs=connection_kwargs(settings.db_statement_timeout_ms),
                timeout=settings.db_connect_timeout_seconds,
                open=False,
            )
        return self._pool

    async def open(self) -> AsyncConnectionPool:
        """Open the pool (idempotent) and return it."""
        pool = self.get_pool()
        if pool.closed:
            await pool.open(wait=False)
            log.info(
                "Connection pool opened",
                extra={
                    "min_size": self._settings.db_pool_min_size,
                    "max_size": self._settings.db_pool_max_size,
                },
            )
        return pool

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[AsyncConnection]:
        """
        Borrow a connection for the duration of the block.

        Example
        -------
            async with manager.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("SELECT 1")
        """
        pool = await self.open()
        async with pool.connection(timeout=self.acquire_timeout) as conn:
            yield conn

    async def close(self) -> None:
        """Close the managed pool and release every connection."""
        if self._pool is not None:
            pool, self._pool = self._pool, None
            if not pool.closed:
                await pool.close()
                log.info("Connection pool closed")


__all__ = [
    "PoolManager",
    "build_dsn",
    "connection_kwargs",
    "redacted_dsn",
]
