"""
PDV Back-office API - Main FastAPI Application

Wires the database, the cache service, the rate limiter and the middleware
stack. Request flow, outermost first:

    CORS -> security headers -> rate limiting -> request screening
         -> response cache -> routers
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry import trace
import structlog

from . import __version__
from .api import api_router
from .core.config import get_settings
from .core.database import database_manager
from .core.logging import configure_logging
from .core.telemetry import init_tracing, shutdown_tracing
from .middleware import (
    RequestScreeningMiddleware,
    ResponseCacheMiddleware,
    SecurityHeadersMiddleware,
)
from .services.cache import cache
from .services.rate_limiting import RateLimiter, RateLimitingMiddleware

logger = structlog.get_logger()
settings = get_settings()

rate_limiter = RateLimiter.from_settings(settings)


# Application lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start and stop the database, cache and rate limiter."""
    configure_logging(settings)
    init_tracing(settings)
    logger.info(
        "Starting PDV API",
        version=__version__,
        environment=settings.ENVIRONMENT,
        cache_backend=settings.CACHE_BACKEND,
    )

    try:
        await database_manager.initialize()
        await database_manager.create_tables()
    except Exception:
        logger.exception("Failed to initialize database")
        raise

    # Never raises; a failed init leaves the cache in miss-only mode
    cache_ready = await cache.init(settings, database_manager.session_factory)
    await rate_limiter.start()

    logger.info(
        "PDV API started",
        cache_ready=cache_ready,
        cache_backend=cache.backend,
    )

    yield

    logger.info("Shutting down PDV API")
    try:
        await rate_limiter.stop()
        await cache.close()
        await database_manager.close()
        shutdown_tracing()
        logger.info("Application shutdown completed")
    except Exception as e:
        logger.error("Error during application shutdown", error=str(e))


# Create FastAPI application
app = FastAPI(
    title="PDV Back-office API",
    description="Point-of-sale back office with a cache-aware request pipeline",
    version=__version__,
    lifespan=lifespan,
)

app.state.rate_limiter = rate_limiter

# Starlette wraps in reverse order: the last middleware added runs first
app.add_middleware(ResponseCacheMiddleware)
app.add_middleware(RequestScreeningMiddleware, limiter=rate_limiter)
app.add_middleware(
    RateLimitingMiddleware,
    limiter=rate_limiter,
    enabled=settings.RATE_LIMIT_ENABLED,
)
app.add_middleware(SecurityHeadersMiddleware, hsts=settings.is_production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=settings.CORS_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Log unhandled errors and answer with a generic 500."""
    span = trace.get_current_span()
    span.set_attribute("error.type", type(exc).__name__)
    span.set_attribute("error.path", request.url.path)
    span.set_status(trace.Status(trace.StatusCode.ERROR, str(exc)))

    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
