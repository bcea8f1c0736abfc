"""Async database engine and session management."""

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import Settings, settings


def create_engine_from_settings(config: Optional[Settings] = None) -> AsyncEngine:
    """Create the async engine used to read records and the job table."""
    config = config or settings
    kwargs = {
        "echo": config.sql_echo,
        "pool_pre_ping": True,
    }
    # SQLite (tests, local runs) uses a single-connection pool
    if not config.database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=config.db_pool_size,
            max_overflow=config.db_max_overflow,
            pool_timeout=15,
            pool_recycle=3600,
        )
    return create_async_engine(config.database_url, **kwargs)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
