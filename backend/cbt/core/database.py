"""
CBT Exam Engine - Database Configuration
Async SQLAlchemy engine and session management
"""
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from cbt.core.config import settings


def build_engine(url: str, echo: bool = False, **kwargs: Any) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    SQLite connections get a busy timeout so that concurrent writers queue
    behind the row holder instead of failing with "database is locked".
    """
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("timeout", settings.SQLITE_BUSY_TIMEOUT_SECONDS)
        return create_async_engine(url, echo=echo, connect_args=connect_args, **kwargs)

    kwargs.setdefault("pool_pre_ping", True)
    kwargs.setdefault("pool_size", 10)
    kwargs.setdefault("max_overflow", 20)
    return create_async_engine(url, echo=echo, **kwargs)


# Create async engine
engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

# Session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions.

    Usage:
        @app.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Initialize database tables."""
    # Register every mapped table on Base.metadata
    import cbt.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
