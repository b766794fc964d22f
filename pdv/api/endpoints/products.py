"""
Products API endpoints

Stock catalogue for the calling user. The list is cached per user and every
write invalidates the product entry of the invalidation registry.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ...core.database import get_database_session
from ...models import Product, User
from ...services.cache import CacheKeys, CacheTTL, cache, invalidate_entities
from ..dependencies import get_current_user, record_activity

logger = structlog.get_logger()
router = APIRouter(prefix="/products", tags=["products"])


class ProductBase(BaseModel):
    """Base product schema with validation."""

    name: str = Field(..., min_length=1, max_length=255, description="Product name")
    description: Optional[str] = Field(None, description="Free-text description")
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    stock: int = Field(0, ge=0, description="Units in stock")


class ProductCreate(ProductBase):
    """Schema for creating products. An existing name accumulates stock."""

    pass


class ProductUpdate(ProductBase):
    """Schema for replacing a product."""

    pass


class ProductRead(BaseModel):
    """Schema for reading products."""

    id: int
    name: str
    description: Optional[str]
    price: float
    stock: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


async def _get_owned_product(
    db: AsyncSession, product_id: int, user: User
) -> Product:
    result = await db.execute(
        select(Product).where(Product.id == product_id, Product.user_id == user.id)
    )
    product = result.scalar_one_or_none()
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.get("")
async def list_products(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database_session),
) -> List[Dict[str, Any]]:
    """List the caller's products."""

    async def load() -> List[Dict[str, Any]]:
        result = await db.execute(
            select(Product).where(Product.user_id == user.id).order_by(Product.id)
        )
        return [
            ProductRead.model_validate(p).model_dump(mode="json")
            for p in result.scalars().all()
        ]

    try:
        return await cache.get_or_set(
            CacheKeys.products(user.username), load, CacheTTL.MEDIUM
        )
    except SQLAlchemyError as e:
        logger.error("Database error listing products", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")


@router.post("")
async def create_product(
    product_data: ProductCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database_session),
) -> Dict[str, Any]:
    """Create a product, or add to the stock of one with the same name."""
    try:
        result = await db.execute(
            select(Product).where(
                Product.user_id == user.id, Product.name == product_data.name
            )
        )
        existing = result.scalar_one_or_none()

        if existing is not None:
            previous_stock = existing.stock
            existing.stock = previous_stock + product_data.stock
            existing.description = product_data.description
            existing.price = product_data.price
            record_activity(
                db,
                user,
                "product_stock_updated",
                f"{existing.name} +{product_data.stock}",
            )
            await db.commit()
            response = {
                "message": "Product stock updated",
                "id": existing.id,
                "previousStock": previous_stock,
                "newStock": previous_stock + product_data.stock,
                "addedStock": product_data.stock,
            }
        else:
            product = Product(
                user_id=user.id,
                name=product_data.name,
                description=product_data.description,
                price=product_data.price,
                stock=product_data.stock,
            )
            db.add(product)
            await db.flush()
            record_activity(db, user, "product_created", product.name)
            await db.commit()
            response = {"message": "Product added", "id": product.id}

    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Database error creating product", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")

    await invalidate_entities(user.username, "product", "activity")
    logger.info("Product saved", product_id=response["id"], username=user.username)
    return response


@router.put("/{product_id}")
async def update_product(
    product_id: int,
    product_data: ProductUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database_session),
) -> Dict[str, Any]:
    product = await _get_owned_product(db, product_id, user)
    try:
        product.name = product_data.name
        product.description = product_data.description
        product.price = product_data.price
        product.stock = product_data.stock
        record_activity(db, user, "product_updated", product_data.name)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Database error updating product", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")

    await invalidate_entities(user.username, "product", "activity")
    return {"message": "Product updated", "id": product_id}


@router.delete("/{product_id}")
async def delete_product(
    product_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database_session),
) -> Dict[str, Any]:
    product = await _get_owned_product(db, product_id, user)
    try:
        await db.delete(product)
        record_activity(db, user, "product_deleted", product.name)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=409, detail="Product is referenced by other records"
        )
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Database error deleting product", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")

    await invalidate_entities(user.username, "product", "activity")
    return {"message": "Product deleted", "id": product_id}
