"""
PDV Database Configuration

Async SQLAlchemy engine and session management:
- Connection retry with exponential backoff at startup
- Session dependency for FastAPI routes
- Table creation for development and tests
"""

import time
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import Settings, get_settings

logger = structlog.get_logger()


class DatabaseManager:
    """Owns the engine and session factory for the process."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    def _engine_kwargs(self) -> Dict[str, Any]:
        url = self.settings.DATABASE_URL
        if url.startswith("sqlite"):
            kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in url or url.endswith("://"):
                # One shared connection, otherwise every session sees an empty DB
                kwargs["poolclass"] = StaticPool
            return kwargs

        return {
            "pool_size": self.settings.DATABASE_POOL_SIZE,
            "max_overflow": self.settings.DATABASE_POOL_SIZE,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((ConnectionError, OSError)),
        before_sleep=lambda retry_state: logger.warning(
            "Database connection retry",
            attempt=retry_state.attempt_number,
        ),
        reraise=True,
    )
    async def _create_engine_with_retry(self) -> AsyncEngine:
        """Create the engine and prove it can connect."""
        start_time = time.time()
        engine = create_async_engine(
            self.settings.DATABASE_URL,
            echo=self.settings.DATABASE_ECHO,
            **self._engine_kwargs(),
        )
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception:
            await engine.dispose()
            raise

        logger.info(
            "Database engine created successfully",
            duration_seconds=round(time.time() - start_time, 3),
        )
        return engine

    async def initialize(self) -> None:
        """Create the engine and session factory. Idempotent."""
        if self.engine is not None:
            return

        try:
            self.engine = await self._create_engine_with_retry()
        except Exception as e:
            logger.error("Failed to initialize database", error=str(e))
            raise

        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def create_tables(self) -> None:
        """Create every table known to the models' metadata."""
        from ..models import Base

        await self.initialize()
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_tables(self) -> None:
        from ..models import Base

        await self.initialize()
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def health_check(self) -> Dict[str, Any]:
        """Run a trivial query and report latency."""
        if self.engine is None:
            return {"status": "unavailable"}

        start_time = time.perf_counter()
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {"status": "unhealthy", "error": str(e)}

        return {
            "status": "healthy",
            "response_time_ms": round((time.perf_counter() - start_time) * 1000, 2),
        }

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            logger.info("Database connections closed")
        self.engine = None
        self.session_factory = None


# Global database manager instance
database_manager = DatabaseManager()


async def get_database_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session; rolls back on error."""
    if database_manager.session_factory is None:
        await database_manager.initialize()

    async with database_manager.session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
