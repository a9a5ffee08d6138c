"""asyncpg connection pool manager."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg
from structlog import get_logger

from app.core.config import settings

logger = get_logger()


class Database:
    """
    Owns one asyncpg pool for the lifetime of the application.

    Created explicitly at startup and handed to the repository; there is no
    module-level pool.
    """

    def __init__(
        self,
        dsn: str | None = None,
        *,
        min_size: int | None = None,
        max_size: int | None = None,
        command_timeout: float | None = None,
        acquire_timeout: float | None = None,
    ) -> None:
        self.dsn = dsn or settings.database_url
        self.min_size = min_size if min_size is not None else settings.database_pool_min_size
        self.max_size = max_size if max_size is not None else settings.database_pool_max_size
        self.command_timeout = (
            command_timeout if command_timeout is not None else settings.database_command_timeout
        )
        self.acquire_timeout = (
            acquire_timeout if acquire_timeout is not None else settings.store_timeout_seconds
        )
        self.pool: asyncpg.Pool | None = None

    async def connect(self, max_retries: int = 3) -> None:
        """
        Create the connection pool, retrying with exponential backoff.

        Raises:
            Exception: The last connection error once retries are exhausted
        """
        for attempt in range(1, max_retries + 1):
            try:
                self.pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=self.min_size,
                    max_size=self.max_size,
                    command_timeout=self.command_timeout,
                )
                logger.info(
                    "database_connected",
                    min_size=self.min_size,
                    max_size=self.max_size,
                    attempt=attempt,
                )
                return
            except Exception as e:
                logger.warning(
                    "database_connect_failed",
                    attempt=attempt,
                    max_retries=max_retries,
                    error=str(e),
                )
                if attempt == max_retries:
                    raise
                await asyncio.sleep(2**attempt)

    async def disconnect(self) -> None:
        """Close the pool if one is open."""
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None
        logger.info("database_disconnected")

    def _require_pool(self) -> asyncpg.Pool:
        if not self.pool:
            raise RuntimeError("Database pool not initialized")
        return self.pool

    async def execute(self, query: str, *args: Any) -> str:
        pool = self._require_pool()
        async with pool.acquire(timeout=self.acquire_timeout) as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        pool = self._require_pool()
        async with pool.acquire(timeout=self.acquire_timeout) as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        pool = self._require_pool()
        async with pool.acquire(timeout=self.acquire_timeout) as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        pool = self._require_pool()
        async with pool.acquire(timeout=self.acquire_timeout) as conn:
            return await conn.fetchval(query, *args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Yield a connection inside a READ COMMITTED transaction.

        Row locks taken with SELECT ... FOR UPDATE are held until the block exits.
        """
        pool = self._require_pool()
        async with pool.acquire(timeout=self.acquire_timeout) as conn:
            async with conn.transaction():
                yield conn
