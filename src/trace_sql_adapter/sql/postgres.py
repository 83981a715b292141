"""PostgreSQL executor backed by an asyncpg connection pool."""

import logging
from collections.abc import AsyncIterator
from typing import Any

import asyncpg

logger = logging.getLogger(__name__)


def rows_affected(status: str) -> int:
    """Row count from a command status tag such as ``INSERT 0 1`` or ``DELETE 12``."""
    parts = status.split()
    if parts and parts[-1].isdigit():
        return int(parts[-1])
    return 0


class PostgresExecutor:
    """Runs statements on a pool created lazily on first use.

    Each call acquires and releases its own connection, so there is no
    transaction spanning several calls.  A pool passed in by the caller is
    used as-is and is not closed by :meth:`close`.
    """

    dialect = "postgres"

    def __init__(
        self,
        dsn: str | None = None,
        *,
        min_size: int = 1,
        max_size: int = 10,
        pool: asyncpg.Pool | None = None,
    ) -> None:
        if dsn is None and pool is None:
            raise ValueError("PostgresExecutor needs a dsn or a pool")
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self._pool = pool
        self._owns_pool = pool is None

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(self.dsn, min_size=self.min_size, max_size=self.max_size)
            logger.info("Opened PostgreSQL pool (min=%d, max=%d)", self.min_size, self.max_size)
        return self._pool

    async def close(self) -> None:
        if self._pool is not None and self._owns_pool:
            await self._pool.close()
            self._pool = None

    async def execute(self, query: str, *args: Any) -> int:
        pool = await self._get_pool()
        status = await pool.execute(query, *args)
        return rows_affected(status)

    async def fetchrow(self, query: str, *args: Any) -> dict[str, Any] | None:
        pool = await self._get_pool()
        record = await pool.fetchrow(query, *args)
        return None if record is None else dict(record)

    async def iterate(self, query: str, *args: Any) -> AsyncIterator[dict[str, Any]]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            # Server-side cursors only exist inside a transaction.
            async with conn.transaction():
                async for record in conn.cursor(query, *args):
                    yield dict(record)
