"""
Unit tests for the primary-with-fallback store and the store factory.
"""

from unittest.mock import AsyncMock, patch

import pytest

from pdv.core.config import Settings
from pdv.infrastructure.cache import (
    CacheCircuitBreaker,
    CacheConnectionException,
    CircuitBreakerConfig,
    MemoryStore,
    RedisStore,
    ResilientStore,
    SQLStore,
    connect_store,
)


class FlakyStore(MemoryStore):
    """MemoryStore whose every operation can be made to fail."""

    backend_name = "redis"

    def __init__(self):
        super().__init__()
        self.down = False

    async def get(self, key):
        if self.down:
            raise CacheConnectionException("down", backend="redis")
        return await super().get(key)

    async def set(self, key, value, ttl_seconds):
        if self.down:
            raise CacheConnectionException("down", backend="redis")
        await super().set(key, value, ttl_seconds)

    async def delete_pattern(self, pattern):
        if self.down:
            raise CacheConnectionException("down", backend="redis")
        return await super().delete_pattern(pattern)


class TestResilientStore:
    """Test routing between primary and fallback."""

    @pytest.fixture
    def primary(self):
        return FlakyStore()

    @pytest.fixture
    def store(self, primary):
        breaker = CacheCircuitBreaker(
            CircuitBreakerConfig(failure_threshold=2, recovery_timeout=60)
        )
        return ResilientStore(primary, fallback=MemoryStore(), breaker=breaker)

    async def _trip(self, store):
        for _ in range(2):
            with pytest.raises(CacheConnectionException):
                await store.get("k")

    @pytest.mark.asyncio
    async def test_healthy_primary_serves(self, store, primary):
        await store.set("k", "v", 60)

        assert await primary.get("k") == "v"
        assert await store.fallback.get("k") is None
        assert store.backend_name == "redis"

    @pytest.mark.asyncio
    async def test_open_circuit_routes_to_fallback(self, store, primary):
        """Once the breaker opens, reads and writes use memory."""
        primary.down = True
        await self._trip(store)

        await store.set("k", "from-fallback", 60)

        assert await store.get("k") == "from-fallback"
        assert store.active_backend == "memory"

    @pytest.mark.asyncio
    async def test_deletes_are_mirrored_to_fallback(self, store, primary):
        """Invalidation reaches the fallback even while the primary is healthy."""
        await store.fallback.set("api:products:alice:GET", "stale", 60)

        await store.delete_pattern("api:products:alice:*")

        assert await store.fallback.get("api:products:alice:GET") is None

    @pytest.mark.asyncio
    async def test_stats_report_breaker_state(self, store):
        stats = await store.stats()

        assert stats["primary_backend"] == "redis"
        assert stats["active_backend"] == "redis"
        assert stats["circuit_breaker"]["state"] == "closed"


class TestConnectStore:
    """Test backend selection at startup."""

    @pytest.mark.asyncio
    async def test_memory_backend(self):
        store = await connect_store(Settings(CACHE_BACKEND="memory"))

        assert isinstance(store, MemoryStore)

    @pytest.mark.asyncio
    async def test_unreachable_redis_falls_back_to_memory(self):
        """A failed connection yields a working MemoryStore, not an error."""
        with patch(
            "pdv.infrastructure.cache.connection_factory.RedisStore.connect",
            AsyncMock(side_effect=CacheConnectionException("refused")),
        ):
            store = await connect_store(Settings(CACHE_BACKEND="redis"))

        assert isinstance(store, MemoryStore)
        await store.set("k", 1, 10)
        assert await store.get("k") == 1

    @pytest.mark.asyncio
    async def test_reachable_primary_is_wrapped(self):
        """A reachable Redis primary is guarded by a breaker with memory fallback."""
        primary = RedisStore(AsyncMock())
        with patch(
            "pdv.infrastructure.cache.connection_factory.RedisStore.connect",
            AsyncMock(return_value=primary),
        ):
            store = await connect_store(
                Settings(CACHE_BACKEND="redis", CIRCUIT_BREAKER_FAILURE_THRESHOLD=7)
            )

        assert isinstance(store, ResilientStore)
        assert store.primary is primary
        assert store.breaker.config.failure_threshold == 7

    @pytest.mark.asyncio
    async def test_sql_backend_without_database_falls_back(self):
        store = await connect_store(Settings(CACHE_BACKEND="sql"), None)

        assert isinstance(store, MemoryStore)
        assert not isinstance(store, SQLStore)
