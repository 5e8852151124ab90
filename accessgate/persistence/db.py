from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from accessgate.core.config import Settings, get_settings
from accessgate.domain.models import Base


def _engine_kwargs(settings: Settings) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"pool_pre_ping": True, "echo": settings.db_echo}
    # Configure bounded asyncpg pools; SQLite uses its own default pool.
    if not settings.database_url.startswith("sqlite"):
        kwargs["pool_size"] = max(1, int(settings.db_pool_size))
        kwargs["max_overflow"] = max(0, int(settings.db_max_overflow))
        kwargs["pool_timeout"] = 30
        kwargs["pool_recycle"] = 1800
        if settings.db_statement_timeout_ms > 0:
            kwargs["connect_args"] = {
                "server_settings": {"statement_timeout": str(int(settings.db_statement_timeout_ms))}
            }
    return kwargs


class Database:
    """Owns the async engine and session factory for one process.

    Built by the application factory (or a test fixture) and handed to request
    handlers through ``app.state``; ``dispose`` must be awaited at shutdown.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.sessionmaker = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Database":
        resolved = settings or get_settings()
        return cls(create_async_engine(resolved.database_url, **_engine_kwargs(resolved)))

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.sessionmaker() as session:
            yield session

    async def create_all(self) -> None:
        # Schema bootstrap for local runs and tests; production schemas are managed externally.
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    def pool_stats(self) -> dict[str, int | None]:
        # Expose pool counters for ops visibility without querying database internals.
        pool = self.engine.sync_engine.pool
        checked_out_fn = getattr(pool, "checkedout", None)
        checked_in_fn = getattr(pool, "checkedin", None)
        overflow_fn = getattr(pool, "overflow", None)
        size_fn = getattr(pool, "size", None)
        return {
            "size": int(size_fn()) if callable(size_fn) else None,
            "checked_out": int(checked_out_fn()) if callable(checked_out_fn) else None,
            "checked_in": int(checked_in_fn()) if callable(checked_in_fn) else None,
            "overflow": int(overflow_fn()) if callable(overflow_fn) else None,
        }
