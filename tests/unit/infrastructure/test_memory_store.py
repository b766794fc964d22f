"""
Unit tests for the in-memory key-value store.

A controllable clock stands in for time.monotonic so expiry is exercised
without sleeping.
"""

import pytest

from pdv.infrastructure.cache import (
    CacheBackendException,
    MemoryStore,
    TTL_MISSING,
    TTL_NO_EXPIRY,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestMemoryStore:
    """Test MemoryStore semantics."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self, clock):
        return MemoryStore(clock=clock)

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, store):
        """A stored value is returned until it expires."""
        assert await store.get("products:all:alice") is None

        await store.set("products:all:alice", [{"id": 1, "name": "Caneta"}], 300)

        assert await store.get("products:all:alice") == [{"id": 1, "name": "Caneta"}]

    @pytest.mark.asyncio
    async def test_expired_entry_is_absent(self, store, clock):
        """After the TTL elapses get returns None and ttl reports missing."""
        await store.set("k", "v", 1)
        clock.advance(1.1)

        assert await store.get("k") is None
        assert await store.ttl("k") == TTL_MISSING
        assert await store.exists("k") is False

    @pytest.mark.asyncio
    async def test_last_writer_wins(self, store):
        """A second set replaces value and expiry."""
        await store.set("k", "first", 10)
        await store.set("k", "second", 100)

        assert await store.get("k") == "second"
        assert await store.ttl("k") == 100

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, store):
        """Deleting twice, or deleting a missing key, is not an error."""
        await store.set("k", 1, 10)
        await store.delete("k")
        await store.delete("k")
        await store.delete("never-set")

        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_delete_pattern(self, store):
        """Only keys matching the glob are removed."""
        await store.set("api:products:alice:GET", "a", 60)
        await store.set("api:products:alice:GET?x=1", "b", 60)
        await store.set("api:products:bob:GET", "c", 60)
        await store.set("products:all:alice", "d", 60)

        removed = await store.delete_pattern("api:products:alice:*")

        assert removed == 2
        assert await store.get("api:products:bob:GET") == "c"
        assert await store.get("products:all:alice") == "d"

    @pytest.mark.asyncio
    async def test_delete_pattern_treats_regex_characters_literally(self, store):
        """Characters other than * carry no special meaning."""
        await store.set("movements:alice:page=1&limit=50", "a", 60)
        await store.set("movements:alice:pageX1", "b", 60)

        removed = await store.delete_pattern("movements:alice:page=1*")

        assert removed == 1
        assert await store.get("movements:alice:pageX1") == "b"

    @pytest.mark.asyncio
    async def test_incr_keeps_original_expiry(self, store, clock):
        """The counter starts at 1 and later increments do not extend the TTL."""
        assert await store.incr("rate_limit:10.0.0.1", 60) == 1
        clock.advance(30)

        assert await store.incr("rate_limit:10.0.0.1", 60) == 2
        assert await store.ttl("rate_limit:10.0.0.1") == 30

    @pytest.mark.asyncio
    async def test_incr_rejects_non_integer(self, store):
        """Incrementing a non-numeric value raises a backend error."""
        await store.set("k", {"a": 1}, 60)

        with pytest.raises(CacheBackendException) as exc_info:
            await store.incr("k", 60)
        assert exc_info.value.error_code == "CACHE_NOT_AN_INTEGER"

    @pytest.mark.asyncio
    async def test_ttl_without_expiry(self, store):
        """Keys stored without a TTL report TTL_NO_EXPIRY."""
        await store.set("k", "v", None)

        assert await store.ttl("k") == TTL_NO_EXPIRY

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(self, store, clock):
        """The sweep deletes expired entries that were never read."""
        await store.set("short", 1, 5)
        await store.set("long", 2, 500)
        await store.set("forever", 3, None)
        clock.advance(10)

        assert await store.sweep_expired() == 1
        assert await store.size() == 2

    @pytest.mark.asyncio
    async def test_flush_and_stats(self, store):
        """Flush empties the store; stats reflect the key count."""
        await store.set("a", 1, 10)
        await store.set("b", 2, 10)
        stats = await store.stats()
        assert stats["backend"] == "memory"
        assert stats["keys"] == 2

        await store.flush()

        assert await store.size() == 0

    @pytest.mark.asyncio
    async def test_start_and_close_manage_sweep_task(self):
        """start() launches the sweep task and close() cancels it."""
        store = MemoryStore(sweep_interval=3600)
        await store.start()
        assert store._sweep_task is not None

        await store.close()

        assert store._sweep_task is None
