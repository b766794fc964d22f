"""
Cache invalidation registry.

One table maps each entity to every cache key pattern that holds its data,
covering both handler-level keys and captured HTTP responses. Writers call
``invalidate_entity`` after their transaction commits; they never list keys
themselves.
"""

import logging
from typing import Dict, Optional, Tuple

from opentelemetry import trace

from .cache_service import cache
from .keys import CacheKeys

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Movement rows carry the product name and products carry stock, so product
# and movement writes clear the same set
_STOCK_PATTERNS: Tuple[str, ...] = (
    "products:all:{username}",
    "api:products:{username}:*",
    "movements:{username}:*",
    "api:movements:{username}:*",
    "user:{username}:stats",
    "api:user/stats:{username}:*",
    CacheKeys.STATS,
)

# Placeholders: {username} is always filled, {id} falls back to "*"
INVALIDATION_REGISTRY: Dict[str, Tuple[str, ...]] = {
    "product": _STOCK_PATTERNS,
    "client": (
        "clients:all:{username}",
        "api:clients:{username}:*",
    ),
    "movement": _STOCK_PATTERNS,
    "account": (
        "accounts:{username}:*",
        "account:{username}:{id}",
        "api:accounts:{username}:*",
        "user:{username}:stats",
        "api:user/stats:{username}:*",
        CacheKeys.STATS,
    ),
    "activity": (
        "user:{username}:activities:*",
        "api:user/activities:{username}:*",
    ),
}


def patterns_for(
    entity: str, username: str, entity_id: Optional[int] = None
) -> Tuple[str, ...]:
    """
    Resolve the registry entry for an entity.

    Raises:
        KeyError: If the entity is not registered
    """
    templates = INVALIDATION_REGISTRY[entity]
    ident = "*" if entity_id is None else str(entity_id)
    return tuple(t.format(username=username, id=ident) for t in templates)


async def invalidate_entity(
    entity: str, username: str, entity_id: Optional[int] = None
) -> bool:
    """
    Drop every cached artifact derived from ``entity`` for ``username``.

    Failures are logged and never raised; the write that triggered the call
    stays committed and readers may see stale data until the TTL runs out.

    Returns:
        True if every pattern was cleared
    """
    patterns = patterns_for(entity, username, entity_id)
    with tracer.start_as_current_span("cache.invalidate_entity") as span:
        span.set_attribute("cache.entity", entity)
        cache.metrics.record_invalidation(entity)

        cleared = True
        for pattern in patterns:
            if "*" in pattern:
                ok = await cache.delete_pattern(pattern)
            else:
                ok = await cache.delete(pattern)
            cleared = cleared and ok

        if not cleared:
            logger.warning(
                f"Cache invalidation incomplete for {entity}",
                extra={"entity": entity, "username": username},
            )
        return cleared


async def invalidate_entities(username: str, *entities: str) -> bool:
    """Invalidate several entities in order."""
    results = [await invalidate_entity(entity, username) for entity in entities]
    return all(results)
