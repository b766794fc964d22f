"""
Rate Limiting Middleware

Counts every request against the caller's IP window. Over the limit the
client gets 429 with ``Retry-After``; a blocked client gets 403.
"""

import logging
import time
from typing import Callable, Iterable, Optional

from fastapi import Request, Response, status
from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from .rate_limiter import RateLimiter, RateLimitResult

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_EXCLUDED_PATHS = ("/api/health", "/api/metrics", "/docs", "/openapi.json")


def get_client_ip(request: Request) -> str:
    """
    Identify the caller.

    The first ``X-Forwarded-For`` hop wins, then ``X-Real-IP``, then the
    socket peer.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client is None:
        return "unknown"
    return request.client.host


def _quota_headers(result: RateLimitResult) -> dict:
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining_requests),
        "X-RateLimit-Reset": str(int(time.time()) + result.reset_seconds),
    }
    if result.retry_after:
        headers["Retry-After"] = str(result.retry_after)
    return headers


class RateLimitingMiddleware(BaseHTTPMiddleware):
    """Applies an injected RateLimiter to every non-excluded path."""

    def __init__(
        self,
        app,
        limiter: RateLimiter,
        exclude_paths: Optional[Iterable[str]] = None,
        enabled: bool = True,
    ):
        super().__init__(app)
        self.limiter = limiter
        self.enabled = enabled
        self.exclude_paths = frozenset(
            DEFAULT_EXCLUDED_PATHS if exclude_paths is None else exclude_paths
        )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled or request.url.path in self.exclude_paths:
            return await call_next(request)

        client_ip = get_client_ip(request)

        with tracer.start_as_current_span("rate_limit.check") as span:
            span.set_attribute("client.ip", client_ip)

            if self.limiter.is_blocked(client_ip):
                span.set_attribute("rate_limit.blocked", True)
                logger.warning(f"Rejected request from blocked IP {client_ip}")
                return JSONResponse(
                    status_code=status.HTTP_403_FORBIDDEN,
                    content={"error": "IP_BLOCKED", "message": "Access denied"},
                    headers={"X-Blocked-Reason": "IP_BLOCKED"},
                )

            result = await self.limiter.check_ip_rate_limit(client_ip)
            span.set_attribute("rate_limit.remaining", result.remaining_requests)

            if not result.allowed:
                span.set_attribute("rate_limit.exceeded", True)
                return JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content={
                        "error": "RATE_LIMIT_EXCEEDED",
                        "message": "Too many requests, try again later",
                        "retry_after": result.retry_after,
                        "limit": result.limit,
                        "window": result.window,
                    },
                    headers=_quota_headers(result),
                )

        response = await call_next(request)
        response.headers.update(_quota_headers(result))
        return response
