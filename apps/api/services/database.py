from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import asyncpg
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

logger = logging.getLogger(__name__)


def to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    if dsn.startswith("postgres://"):
        return "postgresql+asyncpg://" + dsn[len("postgres://") :]
    return dsn


def to_libpq_dsn(dsn: str) -> str:
    """Strip the SQLAlchemy driver suffix so asyncpg can parse the DSN."""

    if dsn.startswith("postgresql+asyncpg://"):
        return "postgresql://" + dsn[len("postgresql+asyncpg://") :]
    return dsn


def create_engine_and_sessions(dsn: str) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(to_asyncpg_dsn(dsn), future=True, pool_pre_ping=True)
    return engine, async_sessionmaker(engine, expire_on_commit=False)


@dataclass(slots=True)
class PostgresConnectionTester:
    """Explicit connectivity probe run before the ticket store is wired up."""

    dsn: str
    _pool: asyncpg.Pool | None = None

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(dsn=to_libpq_dsn(self.dsn), min_size=1, max_size=1)
        return self._pool

    async def test_connection(self) -> bool:
        pool = await self._ensure_pool()
        async with pool.acquire() as connection:
            await connection.execute("SELECT 1")
        logger.debug("PostgreSQL connection check succeeded")
        return True

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    def test_connection_sync(self, timeout: float = 5.0) -> bool:
        """Blocking helper for scripts and health checks outside the event loop."""

        return asyncio.run(asyncio.wait_for(self.test_connection(), timeout=timeout))
