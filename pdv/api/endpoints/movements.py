"""
Stock movements API endpoints

Entries (``entrada``) and exits (``saida``) against the caller's products.
Recording a movement updates the product stock in the same transaction.
"""

from datetime import date, datetime, time, timedelta
from math import ceil
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ...core.database import get_database_session
from ...models import Movement, Product, User
from ...services.cache import CacheKeys, CacheTTL, cache, invalidate_entities
from ..dependencies import get_current_user, record_activity

logger = structlog.get_logger()
router = APIRouter(prefix="/movements", tags=["movements"])

MOVEMENT_TYPE_PATTERN = "^(entrada|saida)$"


class MovementCreate(BaseModel):
    """Schema for recording a movement."""

    product_id: int = Field(..., ge=1, le=2147483647)
    type: str = Field(..., pattern=MOVEMENT_TYPE_PATTERN)
    quantity: int = Field(..., gt=0, le=1000000)
    reason: Optional[str] = Field(None, max_length=255)


def _movement_row(movement: Movement, product_name: Optional[str]) -> Dict[str, Any]:
    return {
        "id": movement.id,
        "type": movement.type,
        "quantity": movement.quantity,
        "reason": movement.reason,
        "created_at": movement.created_at.isoformat(),
        "product_id": movement.product_id,
        "product_name": product_name,
    }


@router.get("")
async def list_movements(
    page: int = Query(1, ge=1, le=10000),
    limit: int = Query(50, ge=1, le=100),
    type: Optional[str] = Query(None, pattern=MOVEMENT_TYPE_PATTERN),
    product_id: Optional[int] = Query(None, ge=1, le=2147483647),
    start_date: Optional[date] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[date] = Query(None, description="YYYY-MM-DD"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database_session),
) -> Dict[str, Any]:
    """Paginated movement history, newest first."""
    if start_date and end_date and start_date > end_date:
        raise HTTPException(
            status_code=400, detail="start_date cannot be after end_date"
        )

    conditions = [Movement.user_id == user.id]
    if type:
        conditions.append(Movement.type == type)
    if product_id is not None:
        conditions.append(Movement.product_id == product_id)
    if start_date:
        conditions.append(Movement.created_at >= datetime.combine(start_date, time.min))
    if end_date:
        next_day = end_date + timedelta(days=1)
        conditions.append(Movement.created_at < datetime.combine(next_day, time.min))

    async def load() -> Dict[str, Any]:
        total = (
            await db.execute(select(func.count(Movement.id)).where(*conditions))
        ).scalar_one()
        result = await db.execute(
            select(Movement, Product.name)
            .outerjoin(Product, Movement.product_id == Product.id)
            .where(*conditions)
            .order_by(Movement.created_at.desc(), Movement.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        total_pages = ceil(total / limit) if total else 0
        logger.debug("Movements loaded", total=total, page=page, username=user.username)
        return {
            "movements": [_movement_row(m, name) for m, name in result.all()],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": total_pages,
                "hasNext": page < total_pages,
                "hasPrev": page > 1,
            },
        }

    filters = (
        f"page={page}&limit={limit}&type={type or ''}"
        f"&product_id={product_id or ''}"
        f"&start_date={start_date or ''}&end_date={end_date or ''}"
    )
    try:
        return await cache.get_or_set(
            CacheKeys.movements(user.username, filters), load, CacheTTL.SHORT
        )
    except SQLAlchemyError as e:
        logger.error("Database error listing movements", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")


@router.post("", status_code=201)
async def create_movement(
    movement_data: MovementCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database_session),
) -> Dict[str, Any]:
    """Record a movement and apply it to the product stock atomically."""
    try:
        result = await db.execute(
            select(Product)
            .where(
                Product.id == movement_data.product_id, Product.user_id == user.id
            )
            .with_for_update()
        )
        product = result.scalar_one_or_none()
        if product is None:
            raise HTTPException(status_code=404, detail="Product not found")

        if movement_data.type == "saida":
            if product.stock < movement_data.quantity:
                raise HTTPException(
                    status_code=400,
                    detail=(
                        f"Insufficient stock. Available: {product.stock}, "
                        f"requested: {movement_data.quantity}"
                    ),
                )
            new_stock = product.stock - movement_data.quantity
        else:
            new_stock = product.stock + movement_data.quantity

        product.stock = new_stock
        movement = Movement(
            user_id=user.id,
            product_id=product.id,
            type=movement_data.type,
            quantity=movement_data.quantity,
            reason=movement_data.reason,
        )
        db.add(movement)
        await db.flush()
        record_activity(
            db,
            user,
            f"movement_{movement_data.type}",
            f"{product.name}: {movement_data.quantity}",
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Database error recording movement", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")

    await invalidate_entities(user.username, "movement", "activity")
    logger.info(
        "Movement recorded",
        movement_id=movement.id,
        product_id=product.id,
        new_stock=new_stock,
    )
    return {"message": "Movement recorded", "id": movement.id, "newStock": new_stock}
