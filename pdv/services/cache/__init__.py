"""
Cache service package.

``cache`` is the process-wide CacheService; key builders and TTL buckets
live in ``keys``; the entity invalidation registry in ``invalidation``.
"""

from .cache_service import CacheService, cache
from .coalescer import RequestCoalescer
from .invalidation import (
    INVALIDATION_REGISTRY,
    invalidate_entities,
    invalidate_entity,
    patterns_for,
)
from .keys import CacheKeys, CacheTTL

__all__ = [
    "CacheService",
    "cache",
    "RequestCoalescer",
    "INVALIDATION_REGISTRY",
    "invalidate_entities",
    "invalidate_entity",
    "patterns_for",
    "CacheKeys",
    "CacheTTL",
]
