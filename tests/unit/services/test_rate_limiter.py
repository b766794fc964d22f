"""
Unit tests for the rate limiter and its middleware.
"""

import httpx
import pytest
from fastapi import FastAPI

from pdv.services.rate_limiting import (
    RateLimitConfig,
    RateLimiter,
    RateLimitingMiddleware,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(
        RateLimitConfig(requests_per_window=3, window_seconds=60),
        suspicious_threshold=2,
        clock=clock,
    )


class TestRateLimiter:
    """Test fixed-window counting and blocking."""

    @pytest.mark.asyncio
    async def test_denies_after_limit(self, limiter):
        results = [await limiter.check_ip_rate_limit("10.0.0.1") for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert results[2].remaining_requests == 0
        assert results[3].retry_after == 60

    @pytest.mark.asyncio
    async def test_window_resets(self, limiter, clock):
        for _ in range(4):
            await limiter.check_ip_rate_limit("10.0.0.1")
        clock.now = 61

        result = await limiter.check_ip_rate_limit("10.0.0.1")

        assert result.allowed is True
        assert result.current_count == 1

    @pytest.mark.asyncio
    async def test_clients_are_counted_separately(self, limiter):
        for _ in range(3):
            await limiter.check_ip_rate_limit("10.0.0.1")

        assert (await limiter.check_ip_rate_limit("10.0.0.2")).allowed is True

    def test_suspicious_threshold_blocks_for_a_window(self, limiter, clock):
        assert limiter.record_suspicious("6.6.6.6", "scanner") is False
        assert limiter.record_suspicious("6.6.6.6", "scanner") is True
        assert limiter.is_blocked("6.6.6.6") is True

        clock.now = 60

        assert limiter.is_blocked("6.6.6.6") is False

    @pytest.mark.asyncio
    async def test_reset_clears_state(self, limiter):
        for _ in range(4):
            await limiter.check_ip_rate_limit("10.0.0.1")
        limiter.record_suspicious("6.6.6.6", "scanner")

        limiter.reset()

        assert (await limiter.check_ip_rate_limit("10.0.0.1")).allowed is True
        assert limiter.get_stats()["suspicious_clients"] == 0

    @pytest.mark.asyncio
    async def test_cleanup_drops_expired_windows(self, limiter, clock):
        await limiter.check_ip_rate_limit("10.0.0.1")
        clock.now = 120

        assert limiter.cleanup() == 1
        assert limiter.get_stats()["tracked_clients"] == 0

    @pytest.mark.asyncio
    async def test_start_stop(self, limiter):
        await limiter.start()
        assert limiter._cleanup_task is not None

        await limiter.stop()

        assert limiter._cleanup_task is None


class TestRateLimitingMiddleware:
    """Test HTTP behavior of the middleware."""

    @pytest.fixture
    def app(self, limiter):
        app = FastAPI()
        app.add_middleware(RateLimitingMiddleware, limiter=limiter)

        @app.get("/api/products")
        async def products():
            return []

        @app.get("/api/health")
        async def health():
            return {"status": "healthy"}

        return app

    @pytest.mark.asyncio
    async def test_429_after_limit(self, app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            for _ in range(3):
                response = await c.get("/api/products")
                assert response.status_code == 200
            response = await c.get("/api/products")

        assert response.status_code == 429
        assert response.json()["error"] == "RATE_LIMIT_EXCEEDED"
        assert response.headers["X-RateLimit-Limit"] == "3"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert "Retry-After" in response.headers

    @pytest.mark.asyncio
    async def test_forwarded_for_identifies_client(self, app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            for _ in range(3):
                await c.get("/api/products", headers={"X-Forwarded-For": "1.1.1.1"})
            response = await c.get(
                "/api/products", headers={"X-Forwarded-For": "2.2.2.2, 1.1.1.1"}
            )

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_excluded_paths_are_not_limited(self, app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            responses = [await c.get("/api/health") for _ in range(5)]

        assert all(r.status_code == 200 for r in responses)

    @pytest.mark.asyncio
    async def test_blocked_client_gets_403(self, app, limiter):
        limiter.record_suspicious("127.0.0.1", "scanner")
        limiter.record_suspicious("127.0.0.1", "scanner")

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            response = await c.get("/api/products")

        assert response.status_code == 403
        assert response.headers["X-Blocked-Reason"] == "IP_BLOCKED"
