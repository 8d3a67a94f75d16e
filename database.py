"""
Database connection and session management for Identity Reconciliation API
This module sets up the SQLAlchemy async engine and session factory used by
the SQL contact store. Supports local PostgreSQL, AWS RDS and SQLite
deployments with connection pooling and error handling.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config import settings
from models import Base

# Configure logging
logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Database connection manager that handles the SQLAlchemy engine,
    session creation, and connection lifecycle management

    The engine is built on first use so importing the application does not
    require a reachable database.
    """

    def __init__(self, database_url: Optional[str] = None, **engine_options):
        self.database_url = database_url
        self.engine_options = engine_options
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    def _create_engine(self) -> AsyncEngine:
        """Create the async engine with pool settings matching the driver"""
        database_url = self.database_url or settings.get_active_database_url()
        logger.info(f"Initializing database connection to: {database_url.split('@')[-1]}")

        options = dict(self.engine_options)
        options.setdefault("echo", settings.DEBUG)
        if database_url.startswith("sqlite"):
            return create_async_engine(database_url, **options)

        options.setdefault("pool_pre_ping", True)  # Validate connections before use
        options.setdefault("pool_size", settings.DB_POOL_SIZE)
        options.setdefault("max_overflow", settings.DB_MAX_OVERFLOW)
        options.setdefault("pool_timeout", settings.DB_POOL_TIMEOUT)
        options.setdefault("connect_args", {
            "server_settings": {
                "application_name": "identity-reconciliation",
            }
        })
        return create_async_engine(database_url, **options)

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = self._create_engine()
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,  # Snapshots stay readable after commit
                autoflush=False
            )
        return self._session_factory

    async def create_tables(self):
        """Create all database tables defined in models"""
        try:
            logger.info("Creating database tables...")
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Failed to create database tables: {e}")
            raise

    async def drop_tables(self):
        """Drop all database tables defined in models"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def test_connection(self) -> bool:
        """Test database connection"""
        try:
            async with self.engine.connect() as connection:
                await connection.execute(text("SELECT 1"))
            logger.info("Database connection test successful")
            return True
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            return False

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """
        Context manager for database sessions with automatic cleanup
        Usage:
            async with db_manager.get_session() as session:
                # database operations
        """
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except BaseException as e:
            await session.rollback()
            logger.error(f"Database session error: {e!r}")
            raise
        finally:
            await session.close()

    async def dispose(self):
        """Close all pooled connections"""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None


# Global database manager instance
db_manager = DatabaseManager()
