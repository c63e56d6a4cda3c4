from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from graphpilot.core.config import Settings, get_settings


def engine_options(settings: Settings) -> dict[str, Any]:
    """Build ``create_async_engine`` keyword arguments for the configured backend.

    SQLite (tests, local dev) keeps SQLAlchemy's default pool. Postgres gets a
    bounded asyncpg pool, and each connection carries the app name and the
    configured statement timeout.
    """
    if settings.database_url.startswith("sqlite"):
        return {}
    server_settings = {"application_name": settings.app_name}
    if settings.api_db_statement_timeout_ms > 0:
        server_settings["statement_timeout"] = str(int(settings.api_db_statement_timeout_ms))
    return {
        "pool_pre_ping": True,
        "pool_size": max(1, int(settings.api_db_pool_size)),
        "max_overflow": max(0, int(settings.api_db_max_overflow)),
        "pool_recycle": 1800,
        "connect_args": {"server_settings": server_settings},
    }


_settings = get_settings()
engine = create_async_engine(_settings.database_url, **engine_options(_settings))
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    # Roll back anything a failed request left uncommitted before the connection returns to the pool.
    async with SessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
