"""
Database Configuration for the Entitlement Engine

Async SQLAlchemy engine and session management for the SQL entitlement
store. The engine is built lazily from DATABASE_URL, so importing this
module never requires a database.

Sessions commit on clean exit and roll back on any error. Constraint
violations propagate as SQLAlchemy IntegrityError for the store to map to
domain errors; other driver failures become DatabaseError.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError as SAIntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config.settings import settings
from app.infrastructure.exceptions import DatabaseError


logger = logging.getLogger(__name__)


def normalize_database_url(database_url: Optional[str]) -> str:
    """Point a postgres URL at the asyncpg driver."""
    if not database_url:
        raise DatabaseError("DATABASE_URL is required for the SQL entitlement store", operation="connect")

    for prefix in ("postgresql://", "postgres://"):
        if database_url.startswith(prefix):
            return database_url.replace(prefix, "postgresql+asyncpg://", 1)
    return database_url


class DatabaseManager:
    """
    Owns the connection pool and the session factory.

    One instance per process, obtained through get_db_manager().
    """

    def __init__(self, database_url: Optional[str] = None):
        self._database_url = database_url
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(
                normalize_database_url(self._database_url or settings.database_url),
                echo=settings.database_echo,
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_timeout=settings.database_pool_timeout,
                pool_pre_ping=True,
            )
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._session_factory

    async def close(self) -> None:
        """Dispose of the pool; the next session re-creates it."""
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_factory = None


_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """Get or create the database manager instance."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Transactional session for one store operation.

    Usage:
        async with get_session_context() as session:
            await PaymentRepository(session).add(payment)
    """
    async with get_db_manager().session_factory() as session:
        try:
            yield session
            await session.commit()
        except SAIntegrityError:
            await session.rollback()
            raise
        except DBAPIError as e:
            await session.rollback()
            logger.error(f"Database operation failed: {e.orig}")
            raise DatabaseError("Database operation failed", operation="transaction", original_error=e)
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a transactional session."""
    async with get_session_context() as session:
        yield session


async def init_db() -> None:
    """Open the pool and verify the database answers (app startup)."""
    async with get_session_context() as session:
        await session.execute(text("SELECT 1"))
    logger.info("Database connection verified")


async def close_db() -> None:
    """Close database connection pool (called on app shutdown)."""
    await get_db_manager().close()
