"""
Key-Value Store Abstraction

Uniform async contract over the cache backends. Stores persist JSON text
with an absolute expiry and own a background sweep task that removes
expired entries independently of access patterns.
"""

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .exceptions import CacheSerializationException

logger = logging.getLogger(__name__)

# ttl() sentinels, same meaning as Redis TTL
TTL_NO_EXPIRY = -1
TTL_MISSING = -2


def glob_to_regex(pattern: str) -> "re.Pattern[str]":
    """Compile a glob where ``*`` matches any substring; everything else is literal."""
    parts = [re.escape(part) for part in pattern.split("*")]
    return re.compile("^" + ".*".join(parts) + "$", re.DOTALL)


def encode_value(key: str, value: Any) -> str:
    """Serialize a value for storage."""
    try:
        return json.dumps(value, separators=(",", ":"), default=str)
    except (TypeError, ValueError) as e:
        raise CacheSerializationException(key, "encode", original_error=e)


def decode_value(key: str, raw: str) -> Any:
    """Deserialize a stored value back to its original shape."""
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise CacheSerializationException(key, "decode", original_error=e)


class KeyValueStore(ABC):
    """
    Abstract key-value store with TTL semantics.

    ``ttl_seconds=None`` stores a key without expiry. All methods may raise
    CacheBackendException subclasses; callers decide how to degrade.
    """

    backend_name = "abstract"

    def __init__(self, sweep_interval: float = 300.0):
        self.sweep_interval = sweep_interval
        self._sweep_task: Optional[asyncio.Task] = None

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the decoded value, or None if absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: Optional[int]) -> None:
        """Upsert a value with an absolute expiry of now + ttl_seconds."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key. Missing keys are not an error."""

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """Remove every key matching a ``*`` glob; return how many were removed."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check whether an unexpired key is present."""

    @abstractmethod
    async def incr(self, key: str, ttl_seconds: int) -> int:
        """
        Increment a counter.

        Absent keys start at 1 with the given TTL; later increments keep
        the existing expiry.
        """

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Seconds remaining, TTL_NO_EXPIRY, or TTL_MISSING."""

    @abstractmethod
    async def flush(self) -> None:
        """Remove every key."""

    @abstractmethod
    async def size(self) -> int:
        """Number of stored keys."""

    @abstractmethod
    async def ping(self) -> bool:
        """Check backend liveness."""

    @abstractmethod
    async def sweep_expired(self) -> int:
        """Delete expired entries; return how many were removed."""

    async def stats(self) -> Dict[str, Any]:
        """Backend statistics for monitoring endpoints."""
        return {"backend": self.backend_name, "keys": await self.size()}

    async def start(self) -> None:
        """Start the periodic sweep task."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def close(self) -> None:
        """Stop the sweep task and release backend resources."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        await self._close()

    async def _close(self) -> None:
        """Release backend resources. Override where there is something to release."""

    async def _sweep_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.sweep_interval)
                removed = await self.sweep_expired()
                if removed:
                    logger.debug(
                        f"Swept {removed} expired cache entries",
                        extra={"backend": self.backend_name, "removed": removed},
                    )
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Cache sweep failed on {self.backend_name}: {e}")
