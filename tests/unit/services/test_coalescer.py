"""
Unit tests for request coalescing.
"""

import asyncio

import pytest

from pdv.services.cache import RequestCoalescer


class TestRequestCoalescer:
    """Test single-flight behavior."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_load(self):
        coalescer = RequestCoalescer()
        started = 0

        async def loader():
            nonlocal started
            started += 1
            await asyncio.sleep(0.02)
            return "value"

        results = await asyncio.gather(
            *(coalescer.run("k", loader) for _ in range(5))
        )

        assert results == ["value"] * 5
        assert started == 1
        assert coalescer.coalesced_count == 4
        assert coalescer.in_flight == 0

    @pytest.mark.asyncio
    async def test_different_keys_load_independently(self):
        coalescer = RequestCoalescer()

        async def loader_for(value):
            async def loader():
                await asyncio.sleep(0.01)
                return value

            return loader

        a, b = await asyncio.gather(
            coalescer.run("a", await loader_for(1)),
            coalescer.run("b", await loader_for(2)),
        )

        assert (a, b) == (1, 2)
        assert coalescer.coalesced_count == 0

    @pytest.mark.asyncio
    async def test_sequential_calls_reload(self):
        """Completed loads are not memoized; that is the cache's job."""
        coalescer = RequestCoalescer()
        calls = 0

        async def loader():
            nonlocal calls
            calls += 1
            return calls

        assert await coalescer.run("k", loader) == 1
        assert await coalescer.run("k", loader) == 2

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_load(self):
        coalescer = RequestCoalescer()

        async def loader():
            await asyncio.sleep(0.05)
            return "done"

        owner = asyncio.create_task(coalescer.run("k", loader))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(coalescer.run("k", loader))
        await asyncio.sleep(0.01)
        waiter.cancel()

        assert await owner == "done"
        with pytest.raises(asyncio.CancelledError):
            await waiter

    @pytest.mark.asyncio
    async def test_cancelled_starter_does_not_fail_waiters(self):
        """Cancelling the caller that started the load leaves joiners served."""
        coalescer = RequestCoalescer()

        async def loader():
            await asyncio.sleep(0.05)
            return "value"

        starter = asyncio.create_task(coalescer.run("k", loader))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(coalescer.run("k", loader))
        await asyncio.sleep(0.01)
        starter.cancel()

        (result,) = await asyncio.gather(waiter, return_exceptions=True)

        assert result == "value"
        assert starter.cancelled()
        assert coalescer.in_flight == 0

    @pytest.mark.asyncio
    async def test_failure_reaches_every_caller(self):
        coalescer = RequestCoalescer()

        async def loader():
            await asyncio.sleep(0.01)
            raise ValueError("database down")

        results = await asyncio.gather(
            *(coalescer.run("k", loader) for _ in range(3)),
            return_exceptions=True,
        )

        assert all(isinstance(r, ValueError) for r in results)
        assert coalescer.in_flight == 0
