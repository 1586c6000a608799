"""Database engine and session management."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from graphsnap.models.schema import Base
from graphsnap.utils.config import DB_URL
from graphsnap.utils.logging import get_logger

logger = get_logger(__name__)


def _async_url(url: str) -> str:
    # SQLite async requires aiosqlite
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


class Database:
    """
    Owns the async engine and session factory for one database file.
    """

    def __init__(self, url: str = DB_URL, echo: bool = False):
        """
        Initialize engine and session factory.

        Args:
            url: SQLAlchemy URL (sqlite:///path is rewritten for aiosqlite)
            echo: Log SQL statements
        """
        self.url = url
        self.engine = create_async_engine(_async_url(url), echo=echo)
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

        # Enable foreign keys for SQLite
        @event.listens_for(self.engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    async def init(self) -> None:
        """Create all tables. Safe to call on an existing database."""
        logger.info(f"Initializing database at: {self.url}")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get an async database session as a context manager.

        Usage:
            async with database.session() as session:
                await session.execute(...)

        Commits on success, rolls back and re-raises on error.
        """
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def close(self) -> None:
        """Clean up database connections."""
        await self.engine.dispose()
        logger.info("Database connections closed")


# Global database instance
_global_database: Optional[Database] = None


def get_database() -> Database:
    """
    Get the global database instance for the configured DB_URL.

    Returns:
        Database instance
    """
    global _global_database
    if _global_database is None:
        _global_database = Database()
    return _global_database
