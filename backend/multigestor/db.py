from __future__ import annotations

from typing import AsyncIterator

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings
from .models import Base

# set by configure() at startup (or by tests)
engine: AsyncEngine | None = None
async_session: async_sessionmaker[AsyncSession] | None = None


def get_engine(url: str | None = None) -> AsyncEngine:
    url = url or settings.database_url
    if not url:
        raise RuntimeError("DATABASE_URL is required")
    return create_async_engine(url, pool_pre_ping=True)


def configure(url: str | None = None) -> AsyncEngine:
    global engine, async_session
    engine = get_engine(url)
    async_session = async_sessionmaker(engine, expire_on_commit=False)
    return engine


async def init_db() -> None:
    if engine is None:
        raise RuntimeError("engine not configured")
    from . import auth_sessions  # noqa: F401  registers the sessions table

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global engine, async_session
    if engine is not None:
        await engine.dispose()
    engine = None
    async_session = None


async def get_db() -> AsyncIterator[AsyncSession]:
    if async_session is None:
        raise HTTPException(status_code=503, detail="db not ready")
    async with async_session() as s:
        yield s
