"""Async engine, sessions and schema bootstrap for the url_likes counter table."""

from collections.abc import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from likecounter.config import get_settings
from likecounter.models import Base

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo_sql,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """Yield a session scoped to one like API request."""

    async with AsyncSessionLocal() as session:
        yield session


async def init_schema() -> None:
    """Create missing tables from ORM metadata (local runs and tests)."""

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def run_health_query(session: AsyncSession) -> None:
    """Run a tiny query to verify database connectivity."""

    await session.execute(text("SELECT 1"))


async def close_engine() -> None:
    """Dispose DB connections during application shutdown."""

    await engine.dispose()
