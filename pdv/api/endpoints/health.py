"""
Health check endpoint for the PDV API.

Probes the database and the cache. A failing database makes the service
unhealthy (503); a failing cache only degrades it, because every cache
operation already falls back to the database.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter
from fastapi.responses import JSONResponse
import structlog

from ...core.config import get_settings
from ...core.database import database_manager
from ...services.cache import cache

logger = structlog.get_logger()
router = APIRouter(prefix="/health", tags=["health"])

settings = get_settings()


@router.get("")
async def health_check() -> JSONResponse:
    database = await database_manager.health_check()
    cache_health = await cache.health_check()

    if database["status"] != "healthy":
        status = "unhealthy"
    elif cache_health["status"] != "healthy":
        status = "degraded"
    else:
        status = "healthy"

    if status != "healthy":
        logger.warning(
            "Health check not healthy", database=database, cache=cache_health
        )

    body: Dict[str, Any] = {
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.OTEL_SERVICE_NAME,
        "version": settings.OTEL_SERVICE_VERSION,
        "environment": settings.ENVIRONMENT,
        "checks": {"database": database, "cache": cache_health},
    }
    return JSONResponse(status_code=503 if status == "unhealthy" else 200, content=body)
