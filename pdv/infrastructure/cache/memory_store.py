"""
In-memory key-value store.

Process-local dict of ``key -> (json_text, expires_at)``. Used standalone in
development and tests, and as the fallback when the primary backend is
unreachable.
"""

import math
import time
from typing import Any, Callable, Dict, Optional, Tuple

from .base import (
    KeyValueStore,
    TTL_MISSING,
    TTL_NO_EXPIRY,
    decode_value,
    encode_value,
    glob_to_regex,
)
from .exceptions import CacheBackendException


class MemoryStore(KeyValueStore):
    """Dict-backed store with lazy expiry on read plus a periodic sweep."""

    backend_name = "memory"

    def __init__(
        self,
        sweep_interval: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(sweep_interval=sweep_interval)
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _live_entry(self, key: str) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl_seconds: Optional[int]) -> Optional[float]:
        if ttl_seconds is None:
            return None
        return self._clock() + ttl_seconds

    async def get(self, key: str) -> Optional[Any]:
        entry = self._live_entry(key)
        if entry is None:
            return None
        return decode_value(key, entry[0])

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int]) -> None:
        self._data[key] = (encode_value(key, value), self._expiry(ttl_seconds))

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def delete_pattern(self, pattern: str) -> int:
        regex = glob_to_regex(pattern)
        matched = [key for key in self._data if regex.match(key)]
        for key in matched:
            del self._data[key]
        return len(matched)

    async def exists(self, key: str) -> bool:
        return self._live_entry(key) is not None

    async def incr(self, key: str, ttl_seconds: int) -> int:
        entry = self._live_entry(key)
        if entry is None:
            self._data[key] = ("1", self._expiry(ttl_seconds))
            return 1

        raw, expires_at = entry
        try:
            value = int(raw)
        except ValueError:
            raise CacheBackendException(
                message=f"Value at '{key}' is not an integer",
                error_code="CACHE_NOT_AN_INTEGER",
                details={"key": key},
            )
        value += 1
        self._data[key] = (str(value), expires_at)
        return value

    async def ttl(self, key: str) -> int:
        entry = self._live_entry(key)
        if entry is None:
            return TTL_MISSING
        if entry[1] is None:
            return TTL_NO_EXPIRY
        return max(0, math.ceil(entry[1] - self._clock()))

    async def flush(self) -> None:
        self._data.clear()

    async def size(self) -> int:
        return len(self._data)

    async def ping(self) -> bool:
        return True

    async def sweep_expired(self) -> int:
        now = self._clock()
        expired = [
            key
            for key, (_, expires_at) in self._data.items()
            if expires_at is not None and now >= expires_at
        ]
        for key in expired:
            del self._data[key]
        return len(expired)

    async def stats(self) -> Dict[str, Any]:
        return {
            "backend": self.backend_name,
            "keys": len(self._data),
            "approx_bytes": sum(len(raw) for raw, _ in self._data.values()),
        }
