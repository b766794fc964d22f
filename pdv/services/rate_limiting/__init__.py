"""
Rate limiting package.

Process-local per-IP limiter with explicit state and lifecycle, plus the
middleware that enforces it.
"""

from .middleware import RateLimitingMiddleware, get_client_ip
from .rate_limiter import (
    RateLimitConfig,
    RateLimiter,
    RateLimitResult,
    RateLimitState,
)

__all__ = [
    "RateLimitingMiddleware",
    "get_client_ip",
    "RateLimitConfig",
    "RateLimiter",
    "RateLimitResult",
    "RateLimitState",
]
