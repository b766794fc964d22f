"""
Cache Store Factory

Builds the configured key-value backend. If the primary cannot be reached at
startup the caller receives a MemoryStore implementing the same contract.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...core.config import Settings
from .base import KeyValueStore
from .circuit_breaker import CacheCircuitBreaker, CircuitBreakerConfig
from .exceptions import CacheBackendException, CacheConnectionException
from .memory_store import MemoryStore
from .redis_store import RedisStore
from .resilient_store import ResilientStore
from .sql_store import SQLStore

logger = logging.getLogger(__name__)


async def _connect_primary(
    settings: Settings,
    session_factory: Optional[async_sessionmaker[AsyncSession]],
) -> KeyValueStore:
    if settings.CACHE_BACKEND == "redis":
        return await RedisStore.connect(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            connection_timeout=settings.REDIS_CONNECTION_TIMEOUT,
            operation_timeout=settings.REDIS_OPERATION_TIMEOUT,
            sweep_interval=settings.CACHE_SWEEP_INTERVAL_SECONDS,
        )

    if settings.CACHE_BACKEND == "sql":
        if session_factory is None:
            raise CacheConnectionException(
                message="SQL cache backend requires an initialized database",
                backend="sql",
            )
        store = SQLStore(
            session_factory, sweep_interval=settings.CACHE_SWEEP_INTERVAL_SECONDS
        )
        await store.ping()
        return store

    return MemoryStore(sweep_interval=settings.CACHE_SWEEP_INTERVAL_SECONDS)


async def connect_store(
    settings: Settings,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> KeyValueStore:
    """
    Connect the configured cache backend.

    Args:
        settings: Application settings (CACHE_BACKEND selects the primary)
        session_factory: Database sessions, required for the sql backend

    Returns:
        ResilientStore wrapping a reachable primary, or a plain MemoryStore
        when the backend is ``memory`` or the primary is unreachable
    """
    try:
        primary = await _connect_primary(settings, session_factory)
    except CacheBackendException as e:
        logger.warning(
            f"Cache backend '{settings.CACHE_BACKEND}' unavailable, "
            f"falling back to in-memory store: {e.message}",
            extra={"error_code": e.error_code, "details": e.details},
        )
        return MemoryStore(sweep_interval=settings.CACHE_SWEEP_INTERVAL_SECONDS)

    if isinstance(primary, MemoryStore):
        return primary

    breaker = CacheCircuitBreaker(
        CircuitBreakerConfig(
            failure_threshold=settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
            recovery_timeout=settings.CIRCUIT_BREAKER_RECOVERY_TIMEOUT,
        )
    )
    logger.info(f"Cache backend '{primary.backend_name}' connected")
    return ResilientStore(
        primary,
        fallback=MemoryStore(sweep_interval=settings.CACHE_SWEEP_INTERVAL_SECONDS),
        breaker=breaker,
    )
