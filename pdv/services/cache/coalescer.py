"""
Request coalescing.

Concurrent callers asking for the same key share one in-flight computation.
A loader failure is delivered to every waiter and nothing is cached.
"""

import asyncio
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger(__name__)


class RequestCoalescer:
    """Single-flight map of key -> in-flight loader task."""

    def __init__(self):
        self._in_flight: Dict[str, asyncio.Task] = {}
        self.coalesced_count = 0

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def run(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run ``loader`` once per key across concurrent callers.

        The load runs as its own task, so cancelling any caller, including
        the one that started it, leaves the others waiting on the result.

        Args:
            key: Coalescing key (normally the cache key)
            loader: Zero-argument coroutine function producing the value

        Returns:
            The loader's result, shared by every caller that joined
        """
        task = self._in_flight.get(key)
        if task is not None:
            self.coalesced_count += 1
            logger.debug(f"Joining in-flight load for {key}")
        else:
            task = asyncio.ensure_future(loader())
            self._in_flight[key] = task
            task.add_done_callback(partial(self._finished, key))

        return await asyncio.shield(task)

    def _finished(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        # Retrieved here so a failure nobody awaited does not log a warning
        if not task.cancelled():
            task.exception()
