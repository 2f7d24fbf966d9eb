from __future__ import annotations

import logging
from typing import Optional

import asyncpg
from asyncpg import Pool

_LOGGER = logging.getLogger("uai.mcp.db")


class Database:
    """Asyncpg pool manager shared by every request."""

    def __init__(
        self,
        dsn: str,
        min_size: int = 1,
        max_size: int = 10,
        command_timeout: float = 30.0,
    ) -> None:
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max(min_size, max_size)
        self._command_timeout = command_timeout
        self._pool: Optional[Pool] = None

    async def connect(self) -> None:
        if self._pool is not None:
            return
        if not self._dsn:
            raise RuntimeError("DATABASE_URL is required")

        # statement_cache_size=0 keeps the pool usable behind pgbouncer
        # in transaction mode (Supabase pooler).
        self._pool = await asyncpg.create_pool(
            dsn=self._dsn,
            min_size=self._min_size,
            max_size=self._max_size,
            command_timeout=self._command_timeout,
            statement_cache_size=0,
        )
        _LOGGER.info("database pool ready", extra={"min_size": self._min_size, "max_size": self._max_size})

    async def close(self) -> None:
        if self._pool is None:
            return
        await self._pool.close()
        self._pool = None

    @property
    def connected(self) -> bool:
        return self._pool is not None

    @property
    def pool(self) -> Pool:
        if self._pool is None:
            raise RuntimeError("Database pool is not initialized")
        return self._pool


__all__ = ["Database"]
