"""
Cache Infrastructure Package

Key-value store backends (memory, Redis, SQL table), the circuit-breaking
fallback wrapper, and the factory that picks one at startup.
"""

from .base import KeyValueStore, TTL_MISSING, TTL_NO_EXPIRY
from .circuit_breaker import (
    CacheCircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from .connection_factory import connect_store
from .exceptions import (
    CacheBackendException,
    CacheCircuitBreakerOpenException,
    CacheConnectionException,
    CacheOperationTimeoutException,
    CacheSerializationException,
)
from .memory_store import MemoryStore
from .redis_store import RedisStore
from .resilient_store import ResilientStore
from .sql_store import SQLStore

__all__ = [
    "KeyValueStore",
    "TTL_MISSING",
    "TTL_NO_EXPIRY",
    "CacheCircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "connect_store",
    "CacheBackendException",
    "CacheCircuitBreakerOpenException",
    "CacheConnectionException",
    "CacheOperationTimeoutException",
    "CacheSerializationException",
    "MemoryStore",
    "RedisStore",
    "ResilientStore",
    "SQLStore",
]
