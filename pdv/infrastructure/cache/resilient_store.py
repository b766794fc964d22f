"""
Primary store with in-memory fallback.

Routes every operation to the primary backend through a circuit breaker.
While the circuit is open the fallback ``MemoryStore`` serves reads and
writes; deletes are always mirrored to the fallback so it never resurfaces
entries that were invalidated on the primary.
"""

import logging
from typing import Any, Dict, Optional

from .base import KeyValueStore
from .circuit_breaker import CacheCircuitBreaker
from .exceptions import CacheCircuitBreakerOpenException
from .memory_store import MemoryStore

logger = logging.getLogger(__name__)


class ResilientStore(KeyValueStore):
    """KeyValueStore that degrades from a primary backend to memory."""

    def __init__(
        self,
        primary: KeyValueStore,
        fallback: Optional[MemoryStore] = None,
        breaker: Optional[CacheCircuitBreaker] = None,
    ):
        super().__init__(sweep_interval=primary.sweep_interval)
        self.primary = primary
        self.fallback = fallback or MemoryStore(sweep_interval=primary.sweep_interval)
        self.breaker = breaker or CacheCircuitBreaker()
        self._serving_fallback = False

    @property
    def backend_name(self) -> str:
        return self.active_backend

    @property
    def active_backend(self) -> str:
        """Name of the backend currently serving requests."""
        if self.breaker.is_open:
            return self.fallback.backend_name
        return self.primary.backend_name

    async def _dispatch(self, operation: str, *args) -> Any:
        if not self.breaker.is_open:
            try:
                result = await self.breaker.call(
                    getattr(self.primary, operation), *args
                )
            except CacheCircuitBreakerOpenException:
                pass
            else:
                if self._serving_fallback:
                    await self._recover()
                return result

        if not self._serving_fallback:
            self._serving_fallback = True
            logger.warning(
                f"Cache primary '{self.primary.backend_name}' unavailable, "
                "serving from memory"
            )
        return await getattr(self.fallback, operation)(*args)

    async def _recover(self) -> None:
        # Entries written during the outage may be stale relative to the primary
        self._serving_fallback = False
        await self.fallback.flush()
        logger.info(f"Cache primary '{self.primary.backend_name}' recovered")

    async def get(self, key: str) -> Optional[Any]:
        return await self._dispatch("get", key)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int]) -> None:
        await self._dispatch("set", key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        await self.fallback.delete(key)
        await self._dispatch("delete", key)

    async def delete_pattern(self, pattern: str) -> int:
        mirrored = await self.fallback.delete_pattern(pattern)
        removed = await self._dispatch("delete_pattern", pattern)
        return removed or mirrored

    async def exists(self, key: str) -> bool:
        return await self._dispatch("exists", key)

    async def incr(self, key: str, ttl_seconds: int) -> int:
        return await self._dispatch("incr", key, ttl_seconds)

    async def ttl(self, key: str) -> int:
        return await self._dispatch("ttl", key)

    async def flush(self) -> None:
        await self.fallback.flush()
        await self._dispatch("flush")

    async def size(self) -> int:
        return await self._dispatch("size")

    async def ping(self) -> bool:
        return await self._dispatch("ping")

    async def sweep_expired(self) -> int:
        removed = await self.fallback.sweep_expired()
        if not self.breaker.is_open:
            removed += await self.breaker.call(self.primary.sweep_expired)
        return removed

    async def start(self) -> None:
        await self.primary.start()
        await self.fallback.start()

    async def close(self) -> None:
        await self.fallback.close()
        await self.primary.close()

    async def stats(self) -> Dict[str, Any]:
        stats = await self._dispatch("stats")
        stats["active_backend"] = self.active_backend
        stats["primary_backend"] = self.primary.backend_name
        stats["circuit_breaker"] = self.breaker.get_state()
        return stats
