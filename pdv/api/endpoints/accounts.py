"""
Accounts API endpoints

Accounts payable (``pagar``) and receivable (``receber``) with optional
product lines and partial payments. Listings are short-lived in the cache
because the overdue status depends on the current date.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
import structlog

from ...core.database import get_database_session
from ...models import Account, AccountPayment, AccountProduct, Product, User
from ...services.cache import (
    CacheKeys,
    CacheTTL,
    cache,
    invalidate_entities,
    invalidate_entity,
)
from ..dependencies import get_current_user, record_activity

logger = structlog.get_logger()
router = APIRouter(prefix="/accounts", tags=["accounts"])

ACCOUNT_TYPE_PATTERN = "^(pagar|receber)$"
ACCOUNT_STATUS_PATTERN = "^(pendente|parcialmente_pago|pago|vencido)$"


# Pydantic schemas for API
class AccountProductItem(BaseModel):
    product_id: int = Field(..., ge=1)
    quantity: int = Field(..., gt=0)
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)


class AccountCreate(BaseModel):
    """Schema for creating accounts."""

    type: str = Field(..., pattern=ACCOUNT_TYPE_PATTERN)
    description: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    due_date: date
    category: Optional[str] = Field(None, max_length=100)
    supplier_customer: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    products: List[AccountProductItem] = Field(default_factory=list)


class PaymentCreate(BaseModel):
    """Schema for registering a payment against an account."""

    payment_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    payment_method: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None


class AccountRead(BaseModel):
    """Schema for reading accounts."""

    id: int
    type: str
    description: str
    amount: float
    paid_amount: float
    due_date: date
    status: str
    category: Optional[str]
    supplier_customer: Optional[str]
    notes: Optional[str]
    paid_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class AccountProductRead(BaseModel):
    product_id: int
    quantity: int
    price: float

    class Config:
        from_attributes = True


class AccountDetail(AccountRead):
    products: List[AccountProductRead]


class PaymentRead(BaseModel):
    id: int
    amount: float
    payment_method: Optional[str]
    notes: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


async def _mark_overdue(db: AsyncSession, user: User) -> int:
    """Flag the caller's pending accounts whose due date has passed."""
    result = await db.execute(
        update(Account)
        .where(
            Account.user_id == user.id,
            Account.status == "pendente",
            Account.due_date < date.today(),
        )
        .values(status="vencido")
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        await db.commit()
    return result.rowcount or 0


async def _get_owned_account(
    db: AsyncSession, account_id: int, user: User, with_products: bool = False
) -> Account:
    query = select(Account).where(
        Account.id == account_id, Account.user_id == user.id
    )
    if with_products:
        query = query.options(selectinload(Account.products))
    result = await db.execute(query)
    account = result.scalar_one_or_none()
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.get("")
async def list_accounts(
    type: Optional[str] = Query(None, pattern=ACCOUNT_TYPE_PATTERN),
    status: Optional[str] = Query(None, pattern=ACCOUNT_STATUS_PATTERN),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database_session),
) -> List[Dict[str, Any]]:
    """List the caller's accounts by due date, optionally filtered."""

    async def load() -> List[Dict[str, Any]]:
        marked = await _mark_overdue(db, user)
        if marked:
            logger.info(
                "Accounts marked overdue", count=marked, username=user.username
            )
            await invalidate_entity("account", user.username)

        query = select(Account).where(Account.user_id == user.id)
        if type:
            query = query.where(Account.type == type)
        if status:
            query = query.where(Account.status == status)
        result = await db.execute(query.order_by(Account.due_date.asc()))
        return [
            AccountRead.model_validate(a).model_dump(mode="json")
            for a in result.scalars().all()
        ]

    filters = f"type={type or ''}&status={status or ''}"
    try:
        return await cache.get_or_set(
            CacheKeys.accounts(user.username, filters), load, CacheTTL.SHORT
        )
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Database error listing accounts", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")


@router.post("", status_code=201)
async def create_account(
    account_data: AccountCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database_session),
) -> Dict[str, Any]:
    """Create an account, linking any product lines given."""
    try:
        product_ids = {item.product_id for item in account_data.products}
        if product_ids:
            result = await db.execute(
                select(Product.id).where(
                    Product.id.in_(product_ids), Product.user_id == user.id
                )
            )
            missing = product_ids - set(result.scalars().all())
            if missing:
                raise HTTPException(
                    status_code=400,
                    detail=f"Unknown products: {sorted(missing)}",
                )

        account = Account(
            user_id=user.id,
            type=account_data.type,
            description=account_data.description,
            amount=account_data.amount,
            paid_amount=Decimal("0"),
            due_date=account_data.due_date,
            status="pendente",
            category=account_data.category,
            supplier_customer=account_data.supplier_customer,
            notes=account_data.notes,
        )
        db.add(account)
        await db.flush()

        for item in account_data.products:
            db.add(
                AccountProduct(
                    account_id=account.id,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    price=item.price,
                )
            )
        record_activity(db, user, "account_created", account.description)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Database error creating account", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")

    await invalidate_entities(user.username, "account", "activity")
    logger.info("Account created", account_id=account.id, username=user.username)
    return {"message": "Account created successfully", "accountId": account.id}


@router.get("/{account_id}")
async def get_account(
    account_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database_session),
) -> Dict[str, Any]:
    """Return one account with its product lines."""

    async def load() -> Dict[str, Any]:
        account = await _get_owned_account(db, account_id, user, with_products=True)
        return AccountDetail.model_validate(account).model_dump(mode="json")

    try:
        return await cache.get_or_set(
            CacheKeys.account(user.username, account_id), load, CacheTTL.SHORT
        )
    except SQLAlchemyError as e:
        logger.error("Database error reading account", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")


@router.post("/{account_id}/payment")
async def register_payment(
    account_id: int,
    payment: PaymentCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database_session),
) -> Dict[str, Any]:
    """
    Register a partial or total payment.

    The account becomes ``parcialmente_pago`` until the paid total reaches
    the amount, then ``pago``. Overpayment is rejected.
    """
    account = await _get_owned_account(db, account_id, user)
    if account.status == "pago":
        raise HTTPException(status_code=400, detail="Account is already paid")

    remaining = account.amount - account.paid_amount
    if payment.payment_amount > remaining:
        raise HTTPException(
            status_code=400,
            detail=(
                "Payment amount exceeds remaining balance. "
                f"Remaining: {remaining:.2f}"
            ),
        )

    try:
        account.paid_amount = account.paid_amount + payment.payment_amount
        if account.paid_amount >= account.amount:
            account.status = "pago"
            account.paid_at = datetime.now(timezone.utc)
        else:
            account.status = "parcialmente_pago"
        if payment.notes:
            account.notes = payment.notes

        db.add(
            AccountPayment(
                account_id=account.id,
                amount=payment.payment_amount,
                payment_method=payment.payment_method,
                notes=payment.notes,
            )
        )
        record_activity(
            db, user, "account_payment", f"{account.id}: {payment.payment_amount}"
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Database error registering payment", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")

    await invalidate_entity("account", user.username, account_id)
    await invalidate_entity("activity", user.username)
    return {
        "message": "Payment registered successfully",
        "status": account.status,
        "paid_amount": float(account.paid_amount),
        "remaining": float(account.amount - account.paid_amount),
    }


@router.get("/{account_id}/payments")
async def list_payments(
    account_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database_session),
) -> List[Dict[str, Any]]:
    """Payment history of one account, newest first."""
    await _get_owned_account(db, account_id, user)
    try:
        result = await db.execute(
            select(AccountPayment)
            .where(AccountPayment.account_id == account_id)
            .order_by(AccountPayment.id.desc())
        )
    except SQLAlchemyError as e:
        logger.error("Database error listing payments", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")

    return [
        PaymentRead.model_validate(p).model_dump(mode="json")
        for p in result.scalars().all()
    ]
