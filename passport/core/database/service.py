"""
Database Service - Core Infrastructure Layer

Purpose
-------
Owns the process-wide AsyncEngine and hands out transactional sessions to
the SQL gamification store.

Architecture Notes
------------------
- `get_transaction()` is the only way store code gets a session; it commits
  on clean exit and rolls back on any exception. Store code never commits.
- NullPool under test (`Config.is_testing()`), QueuePool otherwise.
- PostgreSQL sessions get `SET LOCAL statement_timeout` so a stuck lock wait
  cannot hold a subject's serialization slot forever.

Usage Example
-------------
>>> async with DatabaseService.get_transaction() as session:
>>>     session.add(RewardLedgerEntry(subject_id="u-1", xp=50, reason="Rule: Visit Brasov"))
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from passport.core.config.config import Config
from passport.core.logging.logger import get_logger

logger = get_logger(__name__)


class DatabaseInitializationError(RuntimeError):
    """Raised when database engine initialization fails."""


class DatabaseNotInitializedError(RuntimeError):
    """Raised when database operations are attempted before initialization."""


class DatabaseService:
    """
    Public API
    ----------
    - initialize() / shutdown()
    - get_transaction() -> atomic unit of work
    - health_check() -> reachability check
    - create_schema() / drop_schema() -> bootstrap and test helpers
    """

    _engine: Optional[AsyncEngine] = None
    _session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    _statement_timeout_ms: Optional[int] = None
    _init_lock: asyncio.Lock = asyncio.Lock()

    # ========================================================================
    # Initialization & Shutdown
    # ========================================================================

    @classmethod
    async def initialize(cls, database_url: Optional[str] = None) -> None:
        """
        Create the engine and session factory. Idempotent.

        `database_url` overrides `Config.DATABASE_URL`; integration tests use
        it to point at a throwaway container.

        Raises:
            DatabaseInitializationError: If the URL is missing or the engine
                cannot be created
        """
        async with cls._init_lock:
            if cls._engine is not None:
                return

            url = database_url or Config.DATABASE_URL
            if not url:
                raise DatabaseInitializationError("DATABASE_URL must be configured")

            engine_kwargs: Dict[str, Any] = {"echo": Config.DATABASE_ECHO}
            if Config.is_testing():
                engine_kwargs["poolclass"] = NullPool
            else:
                engine_kwargs.update(
                    pool_size=Config.DATABASE_POOL_SIZE,
                    max_overflow=Config.DATABASE_MAX_OVERFLOW,
                    pool_recycle=Config.DATABASE_POOL_RECYCLE,
                    pool_timeout=Config.DATABASE_POOL_TIMEOUT,
                )

            try:
                cls._engine = create_async_engine(url, **engine_kwargs)
            except Exception as exc:
                logger.error(
                    "DatabaseService initialization failed",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                    exc_info=True,
                )
                raise DatabaseInitializationError(
                    f"Database initialization failed: {exc}"
                ) from exc

            cls._session_factory = async_sessionmaker(
                bind=cls._engine, class_=AsyncSession, expire_on_commit=False
            )
            cls._statement_timeout_ms = (
                Config.DATABASE_STATEMENT_TIMEOUT_MS
                if url.startswith(("postgresql://", "postgresql+asyncpg://"))
                else None
            )

            logger.info(
                "DatabaseService initialized",
                extra={
                    "url_scheme": url.split(":", 1)[0],
                    "pooled": "poolclass" not in engine_kwargs,
                    "statement_timeout_ms": cls._statement_timeout_ms,
                },
            )

    @classmethod
    async def shutdown(cls) -> None:
        """Dispose the engine. Safe to call twice."""
        async with cls._init_lock:
            if cls._engine is None:
                return
            try:
                await cls._engine.dispose()
            finally:
                cls._engine = None
                cls._session_factory = None
                cls._statement_timeout_ms = None
            logger.info("DatabaseService shutdown complete")

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._engine is not None

    @classmethod
    def _require_engine(cls) -> AsyncEngine:
        if cls._engine is None:
            raise DatabaseNotInitializedError(
                "DatabaseService must be initialized before use. "
                "Call DatabaseService.initialize() during startup."
            )
        return cls._engine

    # ========================================================================
    # Schema & Health
    # ========================================================================

    @classmethod
    async def create_schema(cls) -> None:
        """Create every table registered on `Base.metadata`."""
        engine = cls._require_engine()

        # Register all models on the metadata before create_all
        import passport.database.models  # noqa: F401
        from passport.core.database.base import Base

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database schema created", extra={"table_count": len(Base.metadata.tables)})

    @classmethod
    async def drop_schema(cls) -> None:
        engine = cls._require_engine()

        import passport.database.models  # noqa: F401
        from passport.core.database.base import Base

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    @classmethod
    async def health_check(cls) -> bool:
        """`SELECT 1`; False instead of raising when unreachable."""
        if cls._engine is None:
            return False

        try:
            async with cls._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (OperationalError, DBAPIError) as exc:
            logger.warning(
                "Database health check failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return False
        return True

    # ========================================================================
    # Transactions
    # ========================================================================

    @classmethod
    @asynccontextmanager
    async def get_transaction(cls) -> AsyncGenerator[AsyncSession, None]:
        """
        Session wrapped in an atomic transaction.

        Commits when the block exits normally. On any exception the
        transaction is rolled back and the original exception re-raised;
        driver-level failures are logged at ERROR, domain exceptions that
        merely abort the unit of work at DEBUG.
        """
        cls._require_engine()
        assert cls._session_factory is not None

        start = time.perf_counter()
        async with cls._session_factory() as session:
            try:
                if cls._statement_timeout_ms is not None:
                    await session.execute(
                        text(f"SET LOCAL statement_timeout = {int(cls._statement_timeout_ms)}")
                    )
                yield session
                await session.commit()
            except (OperationalError, DBAPIError) as exc:
                await session.rollback()
                logger.error(
                    f"{type(exc).__name__} in transaction; rolled back",
                    extra={
                        "error": str(exc),
                        "duration_ms": (time.perf_counter() - start) * 1000.0,
                    },
                    exc_info=True,
                )
                raise
            except Exception:
                await session.rollback()
                logger.debug(
                    "Transaction rolled back",
                    extra={"duration_ms": (time.perf_counter() - start) * 1000.0},
                )
                raise
