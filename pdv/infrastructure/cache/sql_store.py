"""
SQL-table key-value store.

Stores entries in the ``cache`` table (key, JSON text, expiry in epoch ms)
through SQLAlchemy async sessions. Expired rows are deleted on read and by
the periodic sweep.
"""

import logging
import math
import time
from typing import Any, Callable, Dict, Optional

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...models import CacheEntry
from .base import (
    KeyValueStore,
    TTL_MISSING,
    TTL_NO_EXPIRY,
    decode_value,
    encode_value,
)
from .exceptions import (
    CacheBackendException,
    CacheConnectionException,
)

logger = logging.getLogger(__name__)


def glob_to_like(pattern: str) -> str:
    """Translate a ``*`` glob to a LIKE pattern using backslash as escape."""
    escaped = (
        pattern.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    )
    return escaped.replace("*", "%")


class SQLStore(KeyValueStore):
    """Key-value store backed by a relational table."""

    backend_name = "sql"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sweep_interval: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(sweep_interval=sweep_interval)
        self._session_factory = session_factory
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _expiry_ms(self, ttl_seconds: Optional[int]) -> Optional[int]:
        if ttl_seconds is None:
            return None
        return self._now_ms() + ttl_seconds * 1000

    def _is_expired(self, expiry: Optional[int]) -> bool:
        return expiry is not None and expiry <= self._now_ms()

    def _wrap(self, operation: str, key: Optional[str], error: Exception):
        if isinstance(error, OperationalError):
            return CacheConnectionException(
                message=f"SQL cache {operation} failed: {error}",
                backend=self.backend_name,
                original_error=error,
            )
        exc = CacheBackendException(
            message=f"SQL cache {operation} failed: {error}",
            error_code="CACHE_OPERATION_ERROR",
            details={"operation": operation, "key": key},
        )
        exc.__cause__ = error
        return exc

    async def _load(self, session: AsyncSession, key: str) -> Optional[CacheEntry]:
        entry = await session.get(CacheEntry, key)
        if entry is not None and self._is_expired(entry.expiry):
            await session.delete(entry)
            await session.commit()
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        try:
            async with self._session_factory() as session:
                entry = await self._load(session, key)
                raw = entry.value if entry is not None else None
        except SQLAlchemyError as e:
            raise self._wrap("get", key, e)
        if raw is None:
            return None
        return decode_value(key, raw)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int]) -> None:
        payload = encode_value(key, value)
        expiry = self._expiry_ms(ttl_seconds)
        try:
            await self._upsert(key, payload, expiry)
        except SQLAlchemyError as e:
            raise self._wrap("set", key, e)

    async def _upsert(self, key: str, payload: str, expiry: Optional[int]) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                update(CacheEntry)
                .where(CacheEntry.cache_key == key)
                .values(value=payload, expiry=expiry)
            )
            if result.rowcount == 0:
                session.add(CacheEntry(cache_key=key, value=payload, expiry=expiry))
            try:
                await session.commit()
            except IntegrityError:
                # Lost an insert race; the row exists now
                await session.rollback()
                await session.execute(
                    update(CacheEntry)
                    .where(CacheEntry.cache_key == key)
                    .values(value=payload, expiry=expiry)
                )
                await session.commit()

    async def delete(self, key: str) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(
                    delete(CacheEntry).where(CacheEntry.cache_key == key)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise self._wrap("delete", key, e)

    async def delete_pattern(self, pattern: str) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(CacheEntry).where(
                        CacheEntry.cache_key.like(glob_to_like(pattern), escape="\\")
                    )
                )
                await session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise self._wrap("delete_pattern", pattern, e)

    async def exists(self, key: str) -> bool:
        try:
            async with self._session_factory() as session:
                return await self._load(session, key) is not None
        except SQLAlchemyError as e:
            raise self._wrap("exists", key, e)

    async def incr(self, key: str, ttl_seconds: int) -> int:
        try:
            async with self._session_factory() as session:
                entry = await self._load(session, key)
                if entry is None:
                    session.add(
                        CacheEntry(
                            cache_key=key,
                            value="1",
                            expiry=self._expiry_ms(ttl_seconds),
                        )
                    )
                    await session.commit()
                    return 1

                try:
                    value = int(entry.value) + 1
                except ValueError:
                    raise CacheBackendException(
                        message=f"Value at '{key}' is not an integer",
                        error_code="CACHE_NOT_AN_INTEGER",
                        details={"key": key},
                    )
                entry.value = str(value)
                await session.commit()
                return value
        except SQLAlchemyError as e:
            raise self._wrap("incr", key, e)

    async def ttl(self, key: str) -> int:
        try:
            async with self._session_factory() as session:
                entry = await self._load(session, key)
        except SQLAlchemyError as e:
            raise self._wrap("ttl", key, e)
        if entry is None:
            return TTL_MISSING
        if entry.expiry is None:
            return TTL_NO_EXPIRY
        return max(0, math.ceil((entry.expiry - self._now_ms()) / 1000))

    async def flush(self) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(delete(CacheEntry))
                await session.commit()
        except SQLAlchemyError as e:
            raise self._wrap("flush", None, e)

    async def size(self) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(func.count()).select_from(CacheEntry)
                )
                return result.scalar_one()
        except SQLAlchemyError as e:
            raise self._wrap("size", None, e)

    async def ping(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            raise self._wrap("ping", None, e)

    async def sweep_expired(self) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(CacheEntry).where(CacheEntry.expiry < self._now_ms())
                )
                await session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise self._wrap("sweep", None, e)

    async def stats(self) -> Dict[str, Any]:
        return {"backend": self.backend_name, "keys": await self.size()}
