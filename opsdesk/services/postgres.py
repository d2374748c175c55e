from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import asyncpg

from opsdesk.tickets.errors import DependencyError

# Failures of the database itself, as opposed to an empty or negative result.
DRIVER_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


@asynccontextmanager
async def translate_errors(operation: str) -> AsyncIterator[None]:
    """Re-raise driver level failures as :class:`DependencyError`."""

    try:
        yield
    except DRIVER_ERRORS as exc:
        raise DependencyError(f"{operation} failed: {exc}") from exc


@dataclass(slots=True)
class PostgresPool:
    """Lazily created asyncpg pool shared by the repositories."""

    dsn: str
    min_size: int = 1
    max_size: int = 10
    _pool: asyncpg.Pool | None = None

    async def get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            async with translate_errors("Connecting to PostgreSQL"):
                self._pool = await asyncpg.create_pool(
                    dsn=self.dsn, min_size=self.min_size, max_size=self.max_size
                )
        return self._pool

    async def test_connection(self) -> bool:
        pool = await self.get_pool()
        async with translate_errors("PostgreSQL health check"):
            async with pool.acquire() as connection:
                await connection.execute("SELECT 1")
        return True

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    def test_connection_sync(self, timeout: float = 5.0) -> bool:
        """Blocking helper that can be used from synchronous contexts."""

        return asyncio.run(asyncio.wait_for(self.test_connection(), timeout=timeout))
