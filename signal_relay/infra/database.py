"""
Database client wrapper for signal-relay service.
Provides async engine lifetime, session scopes and schema verification.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from ..domain.ports import PersistenceError, StartupError
from .models import Base, MessageModel, TradeSignalModel


logger = logging.getLogger(__name__)


class Database:
    """
    Async SQLAlchemy engine wrapper owned by the application lifecycle.
    """

    def __init__(
        self,
        url: str,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_timeout: float = 30.0
    ):
        """
        Initialize database client.

        Args:
            url: SQLAlchemy async URL (sqlite+aiosqlite://..., postgresql+asyncpg://...)
            echo: Log SQL statements
            pool_size: Connections kept in pool (ignored for SQLite)
            max_overflow: Max connections beyond pool_size (ignored for SQLite)
            pool_timeout: Seconds to wait for a pooled connection (ignored for SQLite)
        """
        self.url = url
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

        if url.startswith("sqlite"):
            # In-memory SQLite lives only as long as its single connection
            self._engine_options = {"poolclass": StaticPool} if ":memory:" in url else {}
        else:
            self._engine_options = {
                "pool_size": pool_size,
                "max_overflow": max_overflow,
                "pool_timeout": pool_timeout,
                "pool_pre_ping": True,
            }

    async def connect(self) -> None:
        """
        Create the engine and check connectivity.

        Raises:
            StartupError: If the database cannot be reached
        """
        try:
            self._engine = create_async_engine(self.url, echo=self.echo, **self._engine_options)
            self._session_factory = async_sessionmaker(
                bind=self._engine,
                expire_on_commit=False,
                autoflush=False
            )

            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))

            logger.info(
                f"Connected to database: {self._safe_url()}",
                extra={"component": "database"}
            )

        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            await self.close()
            raise StartupError(f"Database connection failed: {e}") from e

    async def create_schema(self) -> None:
        """
        Create missing tables.

        Raises:
            StartupError: If the tables cannot be created
        """
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            logger.error(f"Schema creation failed: {e}")
            raise StartupError(f"Could not create tables: {e}") from e

        logger.info("Database schema created", extra={"component": "database"})

    async def verify_schema(self) -> None:
        """
        Check every expected table with a count query.

        Raises:
            StartupError: If a table or column is missing
        """
        try:
            async with self.session() as session:
                messages = await session.scalar(select(func.count(MessageModel.id)))
                signals = await session.scalar(select(func.count(TradeSignalModel.id)))

            logger.info(
                "Database schema verified",
                extra={
                    "component": "database",
                    "messages": messages,
                    "trade_signals": signals
                }
            )

        except SQLAlchemyError as e:
            logger.error(f"Schema verification failed: {e}")
            raise StartupError(f"Expected tables are not queryable: {e}") from e

    async def close(self) -> None:
        """Dispose the engine and its pooled connections."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

            logger.info("Database connection closed")

    @property
    def engine(self) -> AsyncEngine:
        """
        Get engine instance.

        Raises:
            RuntimeError: If not connected
        """
        if not self._engine:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._engine

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Session scope; rolls back on any error.

        Yields:
            AsyncSession bound to the engine
        """
        if not self._session_factory:
            raise PersistenceError("Database not connected")

        session = self._session_factory()
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def ping(self) -> bool:
        """
        Check connectivity.

        Returns:
            True if a trivial query succeeds, False otherwise
        """
        try:
            if not self._engine:
                return False

            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True

        except SQLAlchemyError as e:
            logger.warning(f"Database ping failed: {e}")
            return False

    def _safe_url(self) -> str:
        """URL without credentials, for logs."""
        return self.url.split("@")[-1]
