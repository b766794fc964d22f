"""
Cache administration and metrics endpoints.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel, Field
import structlog

from ...middleware.cache import get_cache_stats
from ...models import User
from ...services.cache import cache
from ..dependencies import get_current_user, require_admin

logger = structlog.get_logger()
router = APIRouter(tags=["cache"])


class InvalidateRequest(BaseModel):
    pattern: str = Field(..., min_length=1, max_length=255, description="Glob, * only")


@router.get("/cache/stats")
async def cache_stats(user: User = Depends(get_current_user)) -> Dict[str, Any]:
    """Backend statistics, hit rate and the cached route table."""
    return await get_cache_stats()


@router.post("/cache/flush")
async def flush_cache(user: User = Depends(require_admin)) -> Dict[str, Any]:
    if not await cache.flush():
        raise HTTPException(status_code=503, detail="Cache unavailable")
    logger.warning("Cache flushed by admin", username=user.username)
    return {"message": "Cache flushed"}


@router.post("/cache/invalidate")
async def invalidate_pattern(
    request: InvalidateRequest, user: User = Depends(require_admin)
) -> Dict[str, Any]:
    """Delete every key matching ``pattern``."""
    if not await cache.delete_pattern(request.pattern):
        raise HTTPException(status_code=503, detail="Cache unavailable")
    logger.info(
        "Cache pattern invalidated",
        pattern=request.pattern,
        username=user.username,
    )
    return {"message": "Cache invalidated", "pattern": request.pattern}


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus exposition of the cache metrics registry."""
    return Response(content=cache.metrics.export(), media_type=CONTENT_TYPE_LATEST)
