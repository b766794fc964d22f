"""
Redis key-value store.

Connection pooling through ``redis.asyncio``. Expiry is native (SETEX), so
the periodic sweep has nothing to do. Pattern deletes use cursor-based SCAN
followed by UNLINK to avoid blocking the server.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    TimeoutError as RedisTimeoutError,
    RedisError,
)

from .base import KeyValueStore, decode_value, encode_value
from .exceptions import (
    CacheBackendException,
    CacheConnectionException,
    CacheOperationTimeoutException,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCAN_BATCH_SIZE = 100


def glob_to_redis_match(pattern: str) -> str:
    """Escape everything but ``*`` so SCAN MATCH agrees with the other stores."""
    escaped = pattern.replace("\\", "\\\\")
    for char in "?[]":
        escaped = escaped.replace(char, "\\" + char)
    return escaped


class RedisStore(KeyValueStore):
    """Key-value store backed by a Redis server."""

    backend_name = "redis"

    def __init__(
        self,
        client: Redis,
        pool: Optional[ConnectionPool] = None,
        operation_timeout: float = 2.0,
        sweep_interval: float = 300.0,
    ):
        super().__init__(sweep_interval=sweep_interval)
        self._client = client
        self._pool = pool
        self._operation_timeout = operation_timeout

    @classmethod
    async def connect(
        cls,
        url: str,
        max_connections: int = 10,
        connection_timeout: float = 2.0,
        operation_timeout: float = 2.0,
        sweep_interval: float = 300.0,
    ) -> "RedisStore":
        """
        Create a pooled client from a URL and verify it with PING.

        Raises:
            CacheConnectionException: If the server cannot be reached
        """
        pool = ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            socket_connect_timeout=connection_timeout,
            socket_timeout=operation_timeout,
            decode_responses=True,
            encoding="utf-8",
        )
        client = Redis(connection_pool=pool)
        try:
            await client.ping()
        except (RedisError, OSError) as e:
            await pool.disconnect()
            raise CacheConnectionException(
                message=f"Redis connection test failed: {e}",
                backend=cls.backend_name,
                original_error=e,
            )

        logger.info(
            "Redis cache store connected",
            extra={"max_connections": max_connections},
        )
        return cls(
            client,
            pool=pool,
            operation_timeout=operation_timeout,
            sweep_interval=sweep_interval,
        )

    async def _run(
        self,
        operation: str,
        key: Optional[str],
        command: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            return await asyncio.wait_for(command(), self._operation_timeout)
        except (RedisTimeoutError, asyncio.TimeoutError) as e:
            raise CacheOperationTimeoutException(
                operation, self._operation_timeout, key=key
            ) from e
        except (RedisConnectionError, OSError) as e:
            raise CacheConnectionException(
                message=f"Redis {operation} failed: {e}",
                backend=self.backend_name,
                original_error=e,
            )
        except RedisError as e:
            raise CacheBackendException(
                message=f"Redis {operation} failed: {e}",
                error_code="CACHE_OPERATION_ERROR",
                details={"operation": operation, "key": key},
            ) from e

    async def get(self, key: str) -> Optional[Any]:
        raw = await self._run("get", key, lambda: self._client.get(key))
        if raw is None:
            return None
        return decode_value(key, raw)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int]) -> None:
        payload = encode_value(key, value)
        if ttl_seconds is None:
            await self._run("set", key, lambda: self._client.set(key, payload))
        else:
            await self._run(
                "set", key, lambda: self._client.setex(key, ttl_seconds, payload)
            )

    async def delete(self, key: str) -> None:
        await self._run("delete", key, lambda: self._client.unlink(key))

    async def delete_pattern(self, pattern: str) -> int:
        match = glob_to_redis_match(pattern)

        async def scan_and_unlink() -> int:
            removed = 0
            cursor = 0
            while True:
                cursor, keys = await self._client.scan(
                    cursor, match=match, count=SCAN_BATCH_SIZE
                )
                if keys:
                    removed += await self._client.unlink(*keys)
                if cursor == 0:
                    break
            return removed

        return await self._run("delete_pattern", pattern, scan_and_unlink)

    async def exists(self, key: str) -> bool:
        count = await self._run("exists", key, lambda: self._client.exists(key))
        return count == 1

    async def incr(self, key: str, ttl_seconds: int) -> int:
        async def incr_with_expiry() -> int:
            value = await self._client.incr(key)
            # Expiry is only attached when the counter is created
            if value == 1:
                await self._client.expire(key, ttl_seconds)
            return value

        return await self._run("incr", key, incr_with_expiry)

    async def ttl(self, key: str) -> int:
        return await self._run("ttl", key, lambda: self._client.ttl(key))

    async def flush(self) -> None:
        await self._run("flush", None, lambda: self._client.flushdb())

    async def size(self) -> int:
        return await self._run("size", None, lambda: self._client.dbsize())

    async def ping(self) -> bool:
        return bool(await self._run("ping", None, lambda: self._client.ping()))

    async def sweep_expired(self) -> int:
        return 0

    async def start(self) -> None:
        # Redis expires keys itself
        return None

    async def stats(self) -> Dict[str, Any]:
        memory = await self._run("info", None, lambda: self._client.info("memory"))
        keyspace = await self._run(
            "info", None, lambda: self._client.info("keyspace")
        )
        return {
            "backend": self.backend_name,
            "keys": await self.size(),
            "connected": True,
            "used_memory": memory.get("used_memory_human"),
            "keyspace": keyspace,
        }

    async def _close(self) -> None:
        await self._client.aclose()
        if self._pool is not None:
            await self._pool.disconnect()
