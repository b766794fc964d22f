"""
Integration tests for the HTTP response cache.

Run the full middleware stack over ASGI with SQLite and the in-memory
cache backend.
"""

import pytest

from pdv.services.cache import cache

pytestmark = pytest.mark.integration


class TestResponseCacheRoundTrip:
    """MISS, HIT, write, MISS."""

    @pytest.mark.asyncio
    async def test_write_invalidates_captured_list(self, client, login):
        """A product write makes the next list read a MISS with fresh data."""
        login("alice")

        first = await client.get("/api/products")
        assert first.status_code == 200
        assert first.headers["X-Cache"] == "MISS"
        assert first.json() == []

        second = await client.get("/api/products")
        assert second.status_code == 200
        assert second.headers["X-Cache"] == "HIT"
        assert second.content == first.content
        assert second.headers["Cache-Control"] == "private, max-age=300"

        created = await client.post(
            "/api/products",
            json={"name": "Caneta", "price": 2.5, "stock": 10},
        )
        assert created.status_code == 200

        third = await client.get("/api/products")
        assert third.headers["X-Cache"] == "MISS"
        names = [p["name"] for p in third.json()]
        assert names == ["Caneta"]

    @pytest.mark.asyncio
    async def test_hit_reports_age_and_ttl(self, client, login):
        login("alice")
        await client.get("/api/clients")

        response = await client.get("/api/clients")

        assert response.headers["X-Cache"] == "HIT"
        assert response.headers["X-Cache-TTL"] == "300"
        assert int(response.headers["X-Cache-Age"]) >= 0

    @pytest.mark.asyncio
    async def test_query_string_is_part_of_key(self, client, login):
        login("alice")

        await client.get("/api/movements?page=1&limit=10")
        reordered = await client.get("/api/movements?limit=10&page=1")

        assert reordered.headers["X-Cache"] == "MISS"


class TestResponseCacheScoping:
    """Captured responses never cross users."""

    @pytest.mark.asyncio
    async def test_users_do_not_share_entries(self, client, login):
        login("alice")
        await client.post(
            "/api/products", json={"name": "Caderno", "price": 15, "stock": 3}
        )
        alice = await client.get("/api/products")
        assert [p["name"] for p in alice.json()] == ["Caderno"]

        login("bob")
        bob = await client.get("/api/products")

        assert bob.headers["X-Cache"] == "MISS"
        assert bob.json() == []

    @pytest.mark.asyncio
    async def test_health_is_shared_and_public(self, client):
        first = await client.get("/api/health")
        second = await client.get("/api/health")

        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "HIT"
        assert second.headers["Cache-Control"] == "public, max-age=60"


class TestNonSuccessNotCached:
    """Only 200 responses are captured."""

    @pytest.mark.asyncio
    async def test_unauthenticated_request(self, client):
        response = await client.get("/api/products")

        assert response.status_code == 401
        assert "X-Cache" not in response.headers

    @pytest.mark.asyncio
    async def test_unknown_user(self, client, login):
        login("ghost")

        first = await client.get("/api/products")
        second = await client.get("/api/products")

        assert first.status_code == 404
        assert second.status_code == 404
        assert "X-Cache" not in second.headers
        assert await cache.get("api:products:ghost:GET") is None

    @pytest.mark.asyncio
    async def test_validation_error(self, client, login):
        login("alice")

        response = await client.get("/api/movements?page=0")

        assert response.status_code == 422
        assert await cache.exists("api:movements:alice:GET?page=0") is False


class TestCacheDegradation:
    """Requests succeed with the cache unavailable."""

    @pytest.mark.asyncio
    async def test_requests_work_without_cache(self, client, login):
        login("alice")
        await cache.close()

        first = await client.get("/api/products")
        second = await client.get("/api/products")

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.headers["X-Cache"] == "MISS"
