"""
Async PostgreSQL connection pool module.

This module wraps an asyncpg connection pool in an explicitly constructed
Database handle. The FastAPI lifespan creates one handle per process, connects
it at startup, stores it on app.state and closes it at shutdown; services
receive the handle as an argument instead of reaching for a module global.

Connection Pool Configuration (see Settings):
- db_pool_min_size: 2 (minimum idle connections kept in pool)
- db_pool_max_size: 10 (maximum connections in pool)
- db_command_timeout: 60 seconds (query timeout)

Usage:
    # At application startup (in FastAPI lifespan)
    database = Database.from_settings(settings)
    await database.connect()

    # In services
    rows = await database.fetch("SELECT * FROM analytics_runs LIMIT 1")

    # At application shutdown
    await database.close()
"""

from typing import Any, List, Optional

import asyncpg
from asyncpg import Pool

from commerce_insights.core.config import Settings


class Database:
    """
    Lifecycle-managed handle around an asyncpg connection pool.

    Args:
        dsn: PostgreSQL connection string.
        min_size: Minimum idle connections kept in the pool.
        max_size: Maximum connections in the pool.
        command_timeout: Per-query timeout in seconds.
        pool: Optional pre-built pool (tests pass a mock here).
    """

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: float = 60.0,
        pool: Optional[Pool] = None,
    ):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self._pool = pool

    @classmethod
    def from_settings(cls, settings: Settings) -> 'Database':
        return cls(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )

    # =========================================================================
    # Pool Lifecycle
    # =========================================================================

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> Pool:
        """
        Create the connection pool if it does not exist yet.

        Calling connect() on a connected handle returns the existing pool.

        Raises:
            asyncpg.PostgresError: If connection to the database fails.
            OSError: If the database host is unreachable.
        """
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout,
            )
        return self._pool

    async def close(self) -> None:
        """Close the pool gracefully; a no-op when not connected."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def pool(self) -> Pool:
        """Return the pool, connecting lazily on first use."""
        return await self.connect()

    # =========================================================================
    # Query Execution Helpers
    # =========================================================================

    async def fetch(self, query: str, *args: Any) -> List[asyncpg.Record]:
        """
        Execute a query and return all rows.

        Args:
            query: SQL query string with optional $1, $2, etc. parameter placeholders.
            *args: Query parameters corresponding to placeholders in the query.

        Returns:
            List[asyncpg.Record]: Rows returned by the query.
        """
        pool = await self.pool()
        async with pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> Optional[asyncpg.Record]:
        """Execute a query and return its first row, or None."""
        pool = await self.pool()
        async with pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        """
        Execute a command (INSERT/UPDATE/DELETE) and return the status string.

        Returns:
            str: The command status string (e.g., 'INSERT 0 1').
        """
        pool = await self.pool()
        async with pool.acquire() as conn:
            return await conn.execute(query, *args)
