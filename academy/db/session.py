from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from academy.core.config import settings


def engine_options(url: str) -> dict:
    """Keyword arguments for create_async_engine. Pool health checks apply to server databases only."""
    options = {"echo": settings.db_echo, "future": True}
    if not url.startswith("sqlite"):
        # pool_pre_ping: drop connections the server or network closed while idle.
        # pool_recycle: never hand out a connection older than this many seconds.
        options.update(pool_pre_ping=True, pool_recycle=settings.db_pool_recycle_seconds)
    return options


engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session. Services commit their own work; anything left open is rolled back on close."""
    async with AsyncSessionLocal() as session:
        yield session
