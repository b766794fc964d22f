"""
Unit tests for the cache circuit breaker.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from pdv.infrastructure.cache import (
    CacheBackendException,
    CacheCircuitBreaker,
    CacheCircuitBreakerOpenException,
    CacheConnectionException,
    CircuitBreakerConfig,
    CircuitState,
)


class TestCacheCircuitBreaker:
    """Test state transitions of CacheCircuitBreaker."""

    @pytest.fixture
    def breaker(self):
        return CacheCircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=3, recovery_timeout=0.05, success_threshold=1
            )
        )

    async def _fail(self, breaker, times: int):
        failing = AsyncMock(side_effect=CacheConnectionException("down"))
        for _ in range(times):
            with pytest.raises(CacheConnectionException):
                await breaker.call(failing)

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker):
        """Consecutive connection failures open the circuit."""
        await self._fail(breaker, 3)

        assert breaker.state == CircuitState.OPEN
        assert breaker.is_open is True

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_calling(self, breaker):
        """While open the wrapped call is not attempted."""
        await self._fail(breaker, 3)
        func = AsyncMock(return_value="ok")

        with pytest.raises(CacheCircuitBreakerOpenException):
            await breaker.call(func)

        func.assert_not_called()
        assert breaker.get_state()["rejected_calls"] == 1

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self, breaker):
        """After the recovery timeout one success closes the circuit."""
        await self._fail(breaker, 3)
        await asyncio.sleep(0.06)

        assert breaker.is_open is False
        assert await breaker.call(AsyncMock(return_value="ok")) == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker):
        await self._fail(breaker, 3)
        await asyncio.sleep(0.06)

        await self._fail(breaker, 1)

        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_non_backend_errors_do_not_count(self, breaker):
        """Errors outside failure_exceptions propagate without tripping."""
        bad_value = AsyncMock(
            side_effect=CacheBackendException("bad value", error_code="X")
        )
        for _ in range(5):
            with pytest.raises(CacheBackendException):
                await breaker.call(bad_value)

        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        await self._fail(breaker, 2)
        await breaker.call(AsyncMock(return_value=None))

        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_reset(self, breaker):
        await self._fail(breaker, 3)

        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_state()["failure_count"] == 0
