"""Async engine, session factory and the request-scoped session dependency."""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from bankrec.config import settings


class Base(DeclarativeBase):
    pass


def _pool_options(url: str) -> dict[str, Any]:
    # SQLite (tests, local runs) uses its own pool class
    if url.startswith("sqlite"):
        return {}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20, "pool_recycle": 3600}


engine = create_async_engine(settings.database_url, echo=settings.debug, **_pool_options(settings.database_url))
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """One session per request. Routers own commit and rollback."""
    async with async_session_maker() as session:
        yield session
