"""
User dashboard endpoints: summary statistics and the activity feed.
"""

from datetime import date, datetime, time
from math import ceil
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ...core.database import get_database_session
from ...models import Account, Movement, Product, User, UserActivity
from ...services.cache import CacheKeys, CacheTTL, cache
from ..dependencies import get_current_user

logger = structlog.get_logger()
router = APIRouter(prefix="/user", tags=["user"])


async def _count(db: AsyncSession, column, *conditions) -> int:
    result = await db.execute(select(func.count(column)).where(*conditions))
    return result.scalar_one()


@router.get("/stats")
async def user_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database_session),
) -> Dict[str, Any]:
    """
    Dashboard counters for the caller.

    Concurrent dashboard loads share one computation through the cache
    service's coalescing.
    """

    async def load() -> Dict[str, Any]:
        month_start = datetime.combine(date.today().replace(day=1), time.min)
        return {
            "totalProducts": await _count(
                db, Product.id, Product.user_id == user.id
            ),
            "totalMovements": await _count(
                db,
                Movement.id,
                Movement.user_id == user.id,
                Movement.created_at >= month_start,
            ),
            "totalAccounts": await _count(
                db, Account.id, Account.user_id == user.id
            ),
            "pendingAccounts": await _count(
                db,
                Account.id,
                Account.user_id == user.id,
                Account.status.in_(("pendente", "parcialmente_pago", "vencido")),
            ),
        }

    try:
        return await cache.get_or_set(
            CacheKeys.user_stats(user.username), load, CacheTTL.SHORT
        )
    except SQLAlchemyError as e:
        logger.error("Database error computing user stats", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")


@router.get("/activities")
async def user_activities(
    page: int = Query(1, ge=1, le=10000),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database_session),
) -> Dict[str, Any]:
    """Paginated activity feed, newest first."""

    async def load() -> Dict[str, Any]:
        total = await _count(db, UserActivity.id, UserActivity.user_id == user.id)
        result = await db.execute(
            select(UserActivity)
            .where(UserActivity.user_id == user.id)
            .order_by(UserActivity.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        total_pages = ceil(total / limit) if total else 0
        return {
            "activities": [
                {
                    "id": a.id,
                    "action": a.action,
                    "details": a.details,
                    "created_at": a.created_at.isoformat(),
                }
                for a in result.scalars().all()
            ],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": total_pages,
                "hasNext": page < total_pages,
                "hasPrev": page > 1,
            },
        }

    try:
        return await cache.get_or_set(
            CacheKeys.user_activities(user.username, page, limit),
            load,
            CacheTTL.SHORT,
        )
    except SQLAlchemyError as e:
        logger.error("Database error listing activities", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")
