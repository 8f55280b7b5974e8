"""
Database Configuration Module
Async engine + session factory for the SQL-backed item store
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from dreamgoals import config

# Base for models
Base = declarative_base()


def make_engine(url: str = config.DATABASE_URL) -> AsyncEngine:
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,              # Verify connections before use
    )


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_models(bind: AsyncEngine) -> None:
    """Create tables that do not exist yet"""
    from dreamgoals import models  # noqa: F401  registers the tables on Base

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


