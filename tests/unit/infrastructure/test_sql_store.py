"""
Unit tests for the SQL-table key-value store, run against SQLite.
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pdv.infrastructure.cache import SQLStore, TTL_MISSING, TTL_NO_EXPIRY
from pdv.infrastructure.cache.sql_store import glob_to_like
from pdv.models import Base, CacheEntry


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


class TestGlobToLike:
    """Test glob translation for LIKE queries."""

    def test_star_becomes_percent(self):
        assert glob_to_like("api:products:alice:*") == "api:products:alice:%"

    def test_like_wildcards_are_escaped(self):
        """% and _ in keys match literally."""
        assert glob_to_like("user_1:100%*") == "user\\_1:100\\%%"


class TestSQLStore:
    """Test SQLStore against an in-memory database."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self, session_factory, clock):
        return SQLStore(session_factory, clock=clock)

    @pytest.mark.asyncio
    async def test_set_get_roundtrip(self, store):
        """Values survive the JSON encoding in the value column."""
        await store.set("clients:all:alice", [{"id": 1, "cnpj": "123"}], 300)

        assert await store.get("clients:all:alice") == [{"id": 1, "cnpj": "123"}]

    @pytest.mark.asyncio
    async def test_expiry_is_stored_in_milliseconds(self, store, session_factory):
        await store.set("k", "v", 60)

        async with session_factory() as session:
            entry = await session.get(CacheEntry, "k")
        assert entry.expiry == 1_700_000_000_000 + 60_000

    @pytest.mark.asyncio
    async def test_expired_row_is_deleted_on_read(self, store, clock):
        """Reading an expired key removes the row and reports a miss."""
        await store.set("k", "v", 1)
        clock.now += 2

        assert await store.get("k") is None
        assert await store.ttl("k") == TTL_MISSING
        assert await store.size() == 0

    @pytest.mark.asyncio
    async def test_upsert_overwrites(self, store):
        """The second set updates the row instead of inserting a duplicate."""
        await store.set("k", "first", 10)
        await store.set("k", "second", None)

        assert await store.get("k") == "second"
        assert await store.ttl("k") == TTL_NO_EXPIRY
        assert await store.size() == 1

    @pytest.mark.asyncio
    async def test_delete_pattern_counts_rows(self, store):
        await store.set("movements:alice:page=1", 1, 60)
        await store.set("movements:alice:page=2", 2, 60)
        await store.set("movements:bob:page=1", 3, 60)

        removed = await store.delete_pattern("movements:alice:*")

        assert removed == 2
        assert await store.exists("movements:bob:page=1") is True

    @pytest.mark.asyncio
    async def test_delete_pattern_underscore_is_literal(self, store):
        """An underscore in the pattern does not match arbitrary characters."""
        await store.set("user_activities", 1, 60)
        await store.set("userXactivities", 2, 60)

        removed = await store.delete_pattern("user_*")

        assert removed == 1
        assert await store.get("userXactivities") == 2

    @pytest.mark.asyncio
    async def test_incr_keeps_expiry(self, store, clock):
        """Increments after creation leave the expiry untouched."""
        assert await store.incr("brute_force:1.1.1.1", 60) == 1
        clock.now += 20

        assert await store.incr("brute_force:1.1.1.1", 60) == 2
        assert await store.ttl("brute_force:1.1.1.1") == 40

    @pytest.mark.asyncio
    async def test_sweep_and_flush(self, store, clock):
        await store.set("a", 1, 1)
        await store.set("b", 2, 100)
        await store.set("c", 3, None)
        clock.now += 5

        assert await store.sweep_expired() == 1
        assert await store.size() == 2

        await store.flush()
        assert await store.size() == 0

    @pytest.mark.asyncio
    async def test_ping(self, store):
        assert await store.ping() is True
