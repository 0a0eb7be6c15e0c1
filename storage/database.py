"""
Database Connection Management

Owns the SQLAlchemy async engine (and therefore the connection pool) for the
lifetime of the process. The engine is created explicitly by initialize() at
startup and disposed by close() at shutdown; nothing is created lazily on
import.

Every repository operation runs inside transaction(), which acquires one
pooled connection, commits on success, rolls back on error and always
releases the connection. SQLAlchemy errors surface as StorageError.

Usage:
    database = Database("sqlite+aiosqlite:///./bithumb_data.db")
    await database.initialize()
    async with database.transaction() as conn:
        await conn.execute(...)
    await database.close()
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import select, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from core.config import settings
from core.exceptions import StorageError
from core.logging import get_logger
from core.utils.time import current_utc_datetime
from storage.tables import DEFAULT_COINS, coins, metadata


class Database:
    """
    Async database handle with an explicit lifecycle.

    Attributes:
        url: SQLAlchemy async URL (e.g., "postgresql+asyncpg://...", "sqlite+aiosqlite:///...")
        pool_size: Maximum pooled connections (ignored for SQLite)
        pool_timeout: Seconds to wait for a free pooled connection
        engine: The AsyncEngine, available between initialize() and close()
    """

    def __init__(
        self,
        url: Optional[str] = None,
        pool_size: Optional[int] = None,
        pool_timeout: Optional[int] = None,
        echo: Optional[bool] = None
    ):
        self.url = url or settings.database_url
        self.pool_size = pool_size or settings.db_pool_size
        self.pool_timeout = pool_timeout or settings.db_pool_timeout
        self.echo = settings.db_echo if echo is None else echo
        self.engine: Optional[AsyncEngine] = None
        self._logger = get_logger(__name__)

    @property
    def is_initialized(self) -> bool:
        return self.engine is not None

    @property
    def backend(self) -> str:
        return make_url(self.url).get_backend_name()

    # ============================================
    # Lifecycle
    # ============================================

    async def initialize(self, create_tables: bool = True) -> None:
        """
        Create the engine and, optionally, any missing tables.

        Raises:
            StorageError: If the URL names an unknown dialect or a missing or
                          non-async driver, or table creation fails
                          (e.g., database unreachable)
        """
        if self.engine is not None:
            self._logger.warning("Database already initialized")
            return

        try:
            options = {"echo": self.echo, "pool_pre_ping": True}
            if self.backend != "sqlite":
                # Bounded pool: at most pool_size concurrent connections
                options.update(pool_size=self.pool_size, max_overflow=0, pool_timeout=self.pool_timeout)

            self.engine = create_async_engine(self.url, **options)
        except (SQLAlchemyError, ImportError) as e:
            raise StorageError(f"Invalid database configuration: {e}") from e

        self._logger.info(f"Database engine created ({self.backend})")

        if create_tables:
            await self.create_tables()

    async def close(self) -> None:
        """Dispose the engine and its pooled connections."""
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            self._logger.info("Database engine disposed")

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ============================================
    # Scoped Connections
    # ============================================

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """
        Acquire a pooled connection inside a transaction.

        Raises:
            StorageError: If the database is not initialized or any SQL fails
        """
        if self.engine is None:
            raise StorageError("Database not initialized. Call initialize() first.")

        try:
            async with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            raise StorageError(f"Database operation failed: {e}") from e
        except OSError as e:
            raise StorageError(f"Database connection failed: {e}") from e

    async def test_connection(self) -> bool:
        """
        Round-trip a trivial query.

        Returns:
            True when the database answered

        Raises:
            StorageError: If the database cannot be reached
        """
        async with self.transaction() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    # ============================================
    # Schema Setup
    # ============================================

    async def create_tables(self) -> None:
        """Create missing tables and indexes (idempotent)."""
        async with self.transaction() as conn:
            await conn.run_sync(metadata.create_all)
        self._logger.debug("Database tables ensured")

    async def seed_coins(self) -> int:
        """
        Insert the default coin reference rows that are not present yet.

        Returns:
            Number of coins inserted
        """
        async with self.transaction() as conn:
            existing = set((await conn.execute(select(coins.c.symbol))).scalars().all())
            rows = [
                {"symbol": symbol, "name": name, "is_active": True, "created_at": current_utc_datetime()}
                for symbol, name in DEFAULT_COINS
                if symbol not in existing
            ]
            if rows:
                await conn.execute(coins.insert(), rows)

        self._logger.info(f"Seeded {len(rows)} coin(s)")
        return len(rows)
