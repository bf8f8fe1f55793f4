"""Database configuration and session management."""

from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import settings
from .models.base import Base


def engine_options(database_url: str) -> dict[str, Any]:
    """Build engine keyword arguments for a database URL.

    SQLite (local runs and tests) does not accept connection pool sizing,
    so pool settings only apply to server databases.

    Args:
        database_url: Async SQLAlchemy URL

    Returns:
        Keyword arguments for create_async_engine
    """
    if database_url.startswith("sqlite"):
        return {"echo": settings.debug}
    return {
        "echo": settings.debug,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_pre_ping": True,
    }


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


# Create async engine
engine: AsyncEngine = create_async_engine(
    settings.database_url,
    **engine_options(settings.database_url),
)

# Create async session factory
AsyncSessionLocal = build_session_factory(engine)


async def create_tables(bind: AsyncEngine) -> None:
    """Create all tables on the given engine if they don't exist."""
    async with bind.begin() as conn:
        # Import all models to ensure they are registered
        from .models import (  # noqa: F401
            CvJobComparison,
            InterviewQuestion,
            InterviewStage,
            ResearchJob,
            SearchArtifact,
        )

        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """Initialize database tables.

    Creates all tables defined in the models if they don't exist.
    Should be called during application startup.
    """
    await create_tables(engine)


async def close_db() -> None:
    """Close database connections.

    Disposes the engine and closes all connections.
    Should be called during application shutdown.
    """
    await engine.dispose()
