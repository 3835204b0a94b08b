"""
PostgreSQL database connection management.

Uses asyncpg for async database operations. Every query helper translates
driver and connection errors into StoreFailure so callers above the storage
layer never need to know about asyncpg exception types.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from types import TracebackType
from typing import Any

import asyncpg

from party_feed.config.settings import get_settings

logger = logging.getLogger(__name__)

_STORE_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    TimeoutError,
)


class StoreFailure(Exception):
    """The persistence layer rejected a read or write."""

    def __init__(self, message: str, sqlstate: str | None = None):
        super().__init__(message)
        self.sqlstate = sqlstate


def _wrap(exc: Exception) -> StoreFailure:
    sqlstate = getattr(exc, "sqlstate", None)
    return StoreFailure(f"{type(exc).__name__}: {exc}", sqlstate=sqlstate)


class Database:
    """
    Async PostgreSQL database connection manager.

    Usage:
        db = Database()
        await db.connect()

        async with db.transaction() as conn:
            await conn.execute("INSERT INTO ...")

        await db.close()
    """

    def __init__(
        self,
        database_url: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
    ):
        settings = get_settings()

        self._database_url = database_url or str(settings.database_url)
        self._min_size = min_size or settings.db_pool_min_size
        self._max_size = max_size or settings.db_pool_max_size
        self._command_timeout = settings.db_command_timeout

        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        """Establish the connection pool."""
        try:
            self._pool = await asyncpg.create_pool(
                self._database_url,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
            )
            logger.info(
                f"Database connected (pool: {self._min_size}-{self._max_size})"
            )
        except _STORE_ERRORS as e:
            logger.error(f"Failed to connect to database: {e}")
            raise _wrap(e) from e

    async def close(self) -> None:
        """Close database connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database connection closed")

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def pool(self) -> asyncpg.Pool:
        """Get connection pool, raising if not connected."""
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Start a transaction.

        Driver errors raised inside the block surface as StoreFailure.

        Usage:
            async with db.transaction() as conn:
                await conn.execute("INSERT INTO ...")
                await conn.execute("UPDATE ...")
        """
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    yield conn
        except _STORE_ERRORS as e:
            raise _wrap(e) from e

    async def execute(self, query: str, *args: Any) -> str:
        """
        Execute a query without returning results.

        Returns:
            Status string from PostgreSQL (e.g. "UPDATE 1")
        """
        try:
            async with self.acquire() as conn:
                return await conn.execute(query, *args)
        except _STORE_ERRORS as e:
            raise _wrap(e) from e

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        """Execute a query and fetch all results."""
        try:
            async with self.acquire() as conn:
                return await conn.fetch(query, *args)
        except _STORE_ERRORS as e:
            raise _wrap(e) from e

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        """Execute a query and fetch one result."""
        try:
            async with self.acquire() as conn:
                return await conn.fetchrow(query, *args)
        except _STORE_ERRORS as e:
            raise _wrap(e) from e

    async def fetchval(self, query: str, *args: Any) -> Any:
        """Execute a query and fetch a single value."""
        try:
            async with self.acquire() as conn:
                return await conn.fetchval(query, *args)
        except _STORE_ERRORS as e:
            raise _wrap(e) from e

    async def health_check(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            result = await self.fetchval("SELECT 1")
            return result == 1
        except (StoreFailure, RuntimeError):
            return False


# Global database instance
_database: Database | None = None


async def get_database() -> Database:
    """
    Get global database instance.

    Creates and connects if not already connected.
    """
    global _database

    if _database is None:
        _database = Database()
        await _database.connect()

    return _database


async def close_database() -> None:
    """Close global database connection."""
    global _database

    if _database is not None:
        await _database.close()
        _database = None
