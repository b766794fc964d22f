"""
Cache Service

Single entry point the application uses for caching. Owns the key-value
store handle, adds tracing and metrics, and turns every backend failure into
a miss or a no-op so the cache is never a hard dependency.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...core.config import Settings, get_settings
from ...infrastructure.cache import (
    CacheSerializationException,
    KeyValueStore,
    connect_store,
)
from ...monitoring.cache_metrics import cache_metrics
from .coalescer import RequestCoalescer
from .keys import CacheKeys, CacheTTL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class CacheService:
    """
    Process-wide cache facade.

    All methods are safe before ``init()`` and after a failed init: reads
    return None, writes return False, ``incr`` returns 0 and ``ttl`` -1.
    """

    def __init__(self, store: Optional[KeyValueStore] = None):
        self._store = store
        self._initialized = store is not None
        self._lock = asyncio.Lock()
        self._coalescer = RequestCoalescer()
        self.default_ttl = CacheTTL.MEDIUM
        self.metrics = cache_metrics

    @property
    def is_ready(self) -> bool:
        return self._store is not None

    @property
    def backend(self) -> Optional[str]:
        return self._store.backend_name if self._store is not None else None

    async def init(
        self,
        settings: Optional[Settings] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> bool:
        """
        Connect the configured backend and start its sweep task.

        Idempotent. Never raises: on failure the service stays in miss-only
        mode and False is returned.
        """
        if self._initialized:
            return True

        async with self._lock:
            if self._initialized:
                return True

            settings = settings or get_settings()
            if not settings.CACHE_ENABLED:
                logger.info("Cache disabled by configuration")
                return False

            try:
                store = await connect_store(settings, session_factory)
                await store.start()
            except Exception as e:
                logger.error(f"Failed to initialize cache service: {e}")
                return False

            self._store = store
            self._initialized = True
            self.default_ttl = settings.CACHE_DEFAULT_TTL
            logger.info(
                f"Cache service initialized with '{store.backend_name}' backend"
            )
            return True

    async def attach(self, store: KeyValueStore) -> None:
        """Use an already constructed store, replacing any current one."""
        await self.close()
        self._store = store
        self._initialized = True
        await store.start()

    async def close(self) -> None:
        """Stop the sweep task and release the store."""
        store, self._store = self._store, None
        self._initialized = False
        if store is None:
            return
        try:
            await store.close()
            logger.info("Cache service closed")
        except Exception as e:
            logger.error(f"Error closing cache store: {e}")

    def _failed(self, operation: str, key: str, error: Exception, span) -> None:
        logger.error(f"Cache {operation} failed for {key}: {error}")
        span.set_status(trace.Status(trace.StatusCode.ERROR, str(error)))
        self.metrics.record_error(operation)

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on miss, expiry, or failure."""
        with tracer.start_as_current_span("cache.get") as span:
            span.set_attribute("cache.key", key)
            if self._store is None:
                span.set_attribute("cache.hit", False)
                return None

            start_time = time.perf_counter()
            try:
                value = await self._store.get(key)
            except CacheSerializationException as e:
                logger.warning(f"Discarding corrupt cache entry {key}: {e.message}")
                self.metrics.record_error("get")
                await self.delete(key)
                return None
            except Exception as e:
                self._failed("get", key, e, span)
                return None
            finally:
                self.metrics.observe("get", time.perf_counter() - start_time)

            span.set_attribute("cache.hit", value is not None)
            return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store a JSON-serializable value for ``ttl`` seconds (default TTL if None)."""
        ttl = self.default_ttl if ttl is None else ttl
        with tracer.start_as_current_span("cache.set") as span:
            span.set_attribute("cache.key", key)
            span.set_attribute("cache.ttl", int(ttl))
            if self._store is None:
                return False

            start_time = time.perf_counter()
            try:
                await self._store.set(key, value, int(ttl))
                return True
            except Exception as e:
                self._failed("set", key, e, span)
                return False
            finally:
                self.metrics.observe("set", time.perf_counter() - start_time)

    async def delete(self, key: str) -> bool:
        """Remove a key. Deleting a missing key succeeds."""
        with tracer.start_as_current_span("cache.delete") as span:
            span.set_attribute("cache.key", key)
            if self._store is None:
                return False
            try:
                await self._store.delete(key)
                return True
            except Exception as e:
                self._failed("delete", key, e, span)
                return False

    async def delete_pattern(self, pattern: str) -> bool:
        """Remove every key matching a ``*`` glob."""
        with tracer.start_as_current_span("cache.delete_pattern") as span:
            span.set_attribute("cache.pattern", pattern)
            if self._store is None:
                return False
            try:
                removed = await self._store.delete_pattern(pattern)
                span.set_attribute("cache.removed", removed)
                logger.debug(f"Removed {removed} cache entries matching {pattern}")
                return True
            except Exception as e:
                self._failed("delete_pattern", pattern, e, span)
                return False

    async def exists(self, key: str) -> bool:
        if self._store is None:
            return False
        try:
            return await self._store.exists(key)
        except Exception as e:
            logger.error(f"Cache exists failed for {key}: {e}")
            self.metrics.record_error("exists")
            return False

    async def incr(self, key: str, ttl: int = CacheTTL.MEDIUM) -> int:
        """Increment a counter; the TTL applies only when it is created."""
        if self._store is None:
            return 0
        try:
            return await self._store.incr(key, int(ttl))
        except Exception as e:
            logger.error(f"Cache incr failed for {key}: {e}")
            self.metrics.record_error("incr")
            return 0

    async def ttl(self, key: str) -> int:
        """Seconds remaining, -1 without expiry (or on failure), -2 if absent."""
        if self._store is None:
            return -1
        try:
            return await self._store.ttl(key)
        except Exception as e:
            logger.error(f"Cache ttl failed for {key}: {e}")
            self.metrics.record_error("ttl")
            return -1

    async def flush(self) -> bool:
        """Clear every entry. Administrative use only."""
        if self._store is None:
            return False
        try:
            await self._store.flush()
            logger.warning("Cache flushed")
            return True
        except Exception as e:
            logger.error(f"Cache flush failed: {e}")
            self.metrics.record_error("flush")
            return False

    async def get_or_set(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: int = CacheTTL.MEDIUM,
        layer: str = "handler",
    ) -> Any:
        """
        Read-through lookup with request coalescing.

        On a miss, concurrent callers for the same key share one ``loader``
        call. Loader exceptions propagate to every caller and nothing is
        cached.
        """
        cached = await self.get(key)
        if cached is not None:
            self.metrics.record_lookup(layer, hit=True)
            return cached

        self.metrics.record_lookup(layer, hit=False)

        async def load_and_store() -> Any:
            value = await loader()
            if value is not None:
                await self.set(key, value, ttl)
            return value

        before = self._coalescer.coalesced_count
        try:
            return await self._coalescer.run(key, load_and_store)
        finally:
            if self._coalescer.coalesced_count > before:
                self.metrics.record_coalesced()

    async def get_stats(self) -> Optional[Dict[str, Any]]:
        """Backend and hit/miss statistics, or None if unavailable."""
        if self._store is None:
            return None
        try:
            stats = await self._store.stats()
        except Exception as e:
            logger.error(f"Failed to collect cache stats: {e}")
            return None
        stats["metrics"] = self.metrics.summary()
        stats["coalescing"] = {
            "in_flight": self._coalescer.in_flight,
            "coalesced": self._coalescer.coalesced_count,
        }
        return stats

    async def health_check(self) -> Dict[str, Any]:
        """Round-trip a short-lived probe key through the store."""
        with tracer.start_as_current_span("cache.health_check") as span:
            if self._store is None:
                return {"status": "unavailable", "backend": None}

            start_time = time.perf_counter()
            written = await self.set(CacheKeys.HEALTH_PROBE, "ok", 10)
            value = await self.get(CacheKeys.HEALTH_PROBE)
            await self.delete(CacheKeys.HEALTH_PROBE)
            healthy = written and value == "ok"

            span.set_attribute("cache.healthy", healthy)
            return {
                "status": "healthy" if healthy else "unhealthy",
                "backend": self.backend,
                "response_time_ms": round(
                    (time.perf_counter() - start_time) * 1000, 2
                ),
            }


# Global cache service instance
cache = CacheService()
