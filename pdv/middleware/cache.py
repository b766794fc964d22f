"""
Response Cache Middleware

Read-through cache at the HTTP boundary. GET requests to routes listed in
``CACHE_ROUTES`` are answered from the cache when a captured response is
present; otherwise the handler runs and a 200 response is captured under a
key built from route, caller, method and the verbatim query string.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

import structlog
from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..core.security import request_username
from ..services.cache import CacheKeys, CacheTTL, cache

logger = structlog.get_logger()
tracer = trace.get_tracer(__name__)

API_PREFIX = "/api/"

# Never replayed to another request
UNCACHEABLE_HEADERS = {"set-cookie", "content-length", "date", "server"}


@dataclass(frozen=True)
class CacheRouteConfig:
    """Caching rules for one route."""

    ttl: int
    key_prefix: str
    methods: Tuple[str, ...] = ("GET",)
    # Per-user routes embed the caller's username in the key
    per_user: bool = True


CACHE_ROUTES: Dict[str, CacheRouteConfig] = {
    "/api/products": CacheRouteConfig(ttl=CacheTTL.MEDIUM, key_prefix="products"),
    "/api/clients": CacheRouteConfig(ttl=CacheTTL.MEDIUM, key_prefix="clients"),
    "/api/movements": CacheRouteConfig(ttl=CacheTTL.SHORT, key_prefix="movements"),
    "/api/accounts": CacheRouteConfig(ttl=CacheTTL.SHORT, key_prefix="accounts"),
    "/api/user/stats": CacheRouteConfig(ttl=CacheTTL.SHORT, key_prefix="user/stats"),
    "/api/user/activities": CacheRouteConfig(
        ttl=CacheTTL.SHORT, key_prefix="user/activities"
    ),
    "/api/health": CacheRouteConfig(
        ttl=CacheTTL.SHORT, key_prefix="health", per_user=False
    ),
}


def _route_config(path: str) -> Optional[CacheRouteConfig]:
    normalized = path.rstrip("/") or "/"
    return CACHE_ROUTES.get(normalized)


def should_cache(path: str, method: str) -> bool:
    """Whether a request to ``path`` with ``method`` is eligible for caching."""
    config = _route_config(path)
    return config is not None and method.upper() in config.methods


def generate_cache_key(request: Request) -> Optional[str]:
    """
    Build the response cache key for a request.

    Returns None when the route is not cacheable, or when it is per-user and
    the request carries no session.
    """
    config = _route_config(request.url.path)
    if config is None or request.method.upper() not in config.methods:
        return None

    scope = None
    if config.per_user:
        scope = request_username(request)
        if scope is None:
            return None

    return CacheKeys.api_route(
        config.key_prefix, request.method, request.url.query, scope=scope
    )


def _is_captured_response(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and isinstance(value.get("body"), str)
        and isinstance(value.get("headers"), dict)
        and value.get("status") == 200
    )


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    """Serve and capture responses for the routes in ``CACHE_ROUTES``."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        key = generate_cache_key(request)
        if key is None:
            return await call_next(request)

        config = _route_config(request.url.path)

        with tracer.start_as_current_span("cache_middleware.lookup") as span:
            span.set_attribute("cache.key", key)
            cached = await cache.get(key)
            hit = _is_captured_response(cached)
            span.set_attribute("cache.hit", hit)

        cache.metrics.record_lookup("http", hit=hit)
        if hit:
            return self._replay(cached, config)

        response = await call_next(request)
        if response.status_code != 200:
            return response

        body = b"".join([chunk async for chunk in response.body_iterator])
        headers = dict(response.headers)

        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("Response body not cacheable", path=request.url.path)
            return Response(
                content=body, status_code=response.status_code, headers=headers
            )

        await cache.set(
            key,
            {
                "body": text,
                "headers": {
                    k: v
                    for k, v in headers.items()
                    if k.lower() not in UNCACHEABLE_HEADERS
                },
                "status": response.status_code,
                "timestamp": time.time(),
            },
            config.ttl,
        )

        headers["X-Cache"] = "MISS"
        headers["X-Cache-TTL"] = str(config.ttl)
        return Response(content=body, status_code=response.status_code, headers=headers)

    def _replay(self, entry: Dict[str, Any], config: CacheRouteConfig) -> Response:
        age = max(0, int(time.time() - float(entry.get("timestamp", time.time()))))
        visibility = "private" if config.per_user else "public"

        headers = dict(entry["headers"])
        headers["X-Cache"] = "HIT"
        headers["X-Cache-Age"] = str(age)
        headers["X-Cache-TTL"] = str(config.ttl)
        headers["Cache-Control"] = f"{visibility}, max-age={config.ttl}"

        return Response(
            content=entry["body"].encode("utf-8"),
            status_code=entry["status"],
            headers=headers,
        )


async def invalidate_cache(pattern: str) -> bool:
    """Drop captured responses whose key starts with ``api:<pattern>``."""
    return await cache.delete_pattern(f"api:{pattern}*")


async def invalidate_cache_by_route(pathname: str) -> bool:
    """Drop every captured response for a route path such as ``/api/products``."""
    route = pathname.removeprefix(API_PREFIX).strip("/")
    return await invalidate_cache(route)


async def get_cache_stats() -> Dict[str, Any]:
    """Backend statistics plus the cacheable route table."""
    return {
        "stats": await cache.get_stats(),
        "routes": {
            path: {
                "ttl": config.ttl,
                "key_prefix": config.key_prefix,
                "methods": list(config.methods),
                "per_user": config.per_user,
            }
            for path, config in CACHE_ROUTES.items()
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
