"""Async database engine lifecycle with SQLModel and SQLAlchemy 2.0."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, Optional, Type

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlmodel import SQLModel

from catalog_storage.core.config import Settings
from catalog_storage.core.logging import get_logger

logger = get_logger(__name__)


class Database:
    """Owns the async engine and its connection pool.

    Statement building and transaction bookkeeping live in the query
    executor; this class only hands out connections.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._engine: Optional[AsyncEngine] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database not initialized")
        return self._engine

    @property
    def is_started(self) -> bool:
        return self._engine is not None

    async def startup(self, tables: Optional[Iterable[Type[SQLModel]]] = None) -> None:
        """Create the engine and, when configured, the given tables."""
        if self._engine is not None:
            return
        try:
            engine_options = {"echo": self.settings.database_echo, "future": True}
            # SQLite pools do not take sizing arguments
            if self.settings.dialect_name != "sqlite":
                engine_options.update(
                    pool_size=self.settings.database_pool_size,
                    max_overflow=self.settings.database_max_overflow,
                    pool_pre_ping=True,
                )
            self._engine = create_async_engine(self.settings.database_url, **engine_options)

            if self.settings.database_create_tables and tables:
                table_objects = [model.__table__ for model in tables]
                async with self._engine.begin() as conn:
                    await conn.run_sync(
                        lambda sync_conn: SQLModel.metadata.create_all(sync_conn, tables=table_objects)
                    )

            logger.info("Database initialized successfully",
                        dialect=self.settings.dialect_name)

        except Exception as e:
            logger.error("Database startup failed", error=str(e))
            raise

    async def shutdown(self) -> None:
        """Close database connections."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            logger.info("Database connections closed")

    async def connect(self) -> AsyncConnection:
        """Check out a connection the caller must close."""
        return await self.engine.connect()

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[AsyncConnection]:
        """Connection inside a transaction that commits on exit."""
        async with self.engine.begin() as conn:
            yield conn

    async def ping(self) -> bool:
        """Check database connectivity."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("Database ping failed", error=str(e))
            return False
