"""Async SQLAlchemy engine and per-request sessions.

One engine per process, pooled; one ``AsyncSession`` per request, handed out by
the ``get_db`` dependency and closed when the request ends. ``init_db`` creates
``short_links`` and ``click_events`` at startup, ``close_db`` disposes the pool
at shutdown.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortlink.config import get_settings

__all__ = ["Base", "get_db", "ping_db", "init_db", "close_db"]

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_size=20,
    max_overflow=10,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


async def ping_db(session: AsyncSession) -> None:
    await session.execute(text("SELECT 1"))


async def init_db() -> None:
    # Imported for its side effect of registering the tables on Base.metadata.
    import shortlink.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
