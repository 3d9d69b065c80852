"""
Database connection and session management.

Provides the declarative base, lazily created async engine and session
factory, and helpers to create or drop the schema outside of Alembic.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from crmcore.db.config import get_db_settings
from crmcore.utils.logger import logger


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


_async_engine: AsyncEngine | None = None
_async_session_local: async_sessionmaker[AsyncSession] | None = None


def build_async_engine(url: str, echo: bool = False, **kwargs) -> AsyncEngine:
    """
    Create an async engine, sharing one connection for in-memory SQLite.

    Args:
        url: Async SQLAlchemy URL
        echo: Echo SQL statements to logs
        **kwargs: Extra engine options (pool sizing for server databases)

    Returns:
        AsyncEngine: The configured engine
    """
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(url, echo=echo, pool_pre_ping=True, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory used by the SQL data service."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_async_engine() -> AsyncEngine:
    """Get or create the async database engine."""
    global _async_engine
    if _async_engine is None:
        settings = get_db_settings()
        if settings.is_sqlite:
            _async_engine = build_async_engine(settings.get_async_url(), settings.echo)
        else:
            _async_engine = build_async_engine(
                settings.get_async_url(),
                settings.echo,
                pool_size=settings.pool_size,
                max_overflow=settings.max_overflow,
            )
    return _async_engine


def get_async_session_local() -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory."""
    global _async_session_local
    if _async_session_local is None:
        _async_session_local = build_session_factory(get_async_engine())
    return _async_session_local


async def init_db(engine: AsyncEngine | None = None) -> None:
    """
    Create all tables.

    Note:
        In production, use Alembic migrations instead.
        This is useful for testing or initial setup.
    """
    # Register every model on the metadata before create_all
    import crmcore.db.models  # noqa: F401

    logger.info("Initializing database tables...")
    engine = engine or get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized successfully")


async def close_db() -> None:
    """
    Dispose of the engine and forget the cached factories.

    Call this on application shutdown.
    """
    global _async_engine, _async_session_local
    if _async_engine is None:
        return
    logger.info("Closing database connections...")
    await _async_engine.dispose()
    _async_engine = None
    _async_session_local = None
    logger.info("Database connections closed")
