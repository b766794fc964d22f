"""
Middleware modules for request/response processing.

Includes:
- Response caching for registered GET routes
- Security headers and request screening
"""

from .cache import ResponseCacheMiddleware
from .security import RequestScreeningMiddleware, SecurityHeadersMiddleware

__all__ = [
    "ResponseCacheMiddleware",
    "RequestScreeningMiddleware",
    "SecurityHeadersMiddleware",
]
