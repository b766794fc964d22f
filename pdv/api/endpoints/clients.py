"""
Clients API endpoints

Business customers of the calling user. CNPJ is unique across the system.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ...core.database import get_database_session
from ...models import Client, User
from ...services.cache import CacheKeys, CacheTTL, cache, invalidate_entities
from ..dependencies import get_current_user, record_activity

logger = structlog.get_logger()
router = APIRouter(prefix="/clients", tags=["clients"])


class ClientBase(BaseModel):
    """Base client schema with validation."""

    company_name: str = Field(..., min_length=1, max_length=255)
    cnpj: str = Field(..., min_length=14, max_length=20, description="CNPJ")
    email: str = Field(..., min_length=3, max_length=255)
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=2)
    zip_code: Optional[str] = Field(None, max_length=10)
    contact_person: Optional[str] = Field(None, max_length=255)


class ClientRead(ClientBase):
    id: int

    class Config:
        from_attributes = True


async def _cnpj_taken(
    db: AsyncSession, cnpj: str, exclude_id: Optional[int] = None
) -> bool:
    query = select(Client.id).where(Client.cnpj == cnpj)
    if exclude_id is not None:
        query = query.where(Client.id != exclude_id)
    result = await db.execute(query)
    return result.first() is not None


@router.get("")
async def list_clients(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database_session),
) -> List[Dict[str, Any]]:
    """List the caller's clients ordered by company name."""

    async def load() -> List[Dict[str, Any]]:
        result = await db.execute(
            select(Client)
            .where(Client.user_id == user.id)
            .order_by(Client.company_name)
        )
        return [
            ClientRead.model_validate(c).model_dump(mode="json")
            for c in result.scalars().all()
        ]

    try:
        return await cache.get_or_set(
            CacheKeys.clients(user.username), load, CacheTTL.MEDIUM
        )
    except SQLAlchemyError as e:
        logger.error("Database error listing clients", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")


@router.post("", status_code=201)
async def create_client(
    client_data: ClientBase,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database_session),
) -> Dict[str, Any]:
    """Create a client; a CNPJ already on file is a conflict."""
    try:
        if await _cnpj_taken(db, client_data.cnpj):
            raise HTTPException(status_code=409, detail="CNPJ already registered")

        client = Client(user_id=user.id, **client_data.model_dump())
        db.add(client)
        await db.flush()
        record_activity(db, user, "client_created", client.company_name)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="CNPJ already registered")
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Database error creating client", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")

    await invalidate_entities(user.username, "client", "activity")
    logger.info("Client created", client_id=client.id, username=user.username)
    return {"message": "Client created", "id": client.id}


@router.put("/{client_id}")
async def update_client(
    client_id: int,
    client_data: ClientBase,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database_session),
) -> Dict[str, Any]:
    try:
        result = await db.execute(
            select(Client).where(Client.id == client_id, Client.user_id == user.id)
        )
        client = result.scalar_one_or_none()
        if client is None:
            raise HTTPException(status_code=404, detail="Client not found")
        if await _cnpj_taken(db, client_data.cnpj, exclude_id=client_id):
            raise HTTPException(status_code=409, detail="CNPJ already registered")

        for field, value in client_data.model_dump().items():
            setattr(client, field, value)
        record_activity(db, user, "client_updated", client.company_name)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="CNPJ already registered")
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Database error updating client", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")

    await invalidate_entities(user.username, "client", "activity")
    return {"message": "Client updated", "id": client_id}


@router.delete("/{client_id}")
async def delete_client(
    client_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_database_session),
) -> Dict[str, Any]:
    try:
        result = await db.execute(
            select(Client).where(Client.id == client_id, Client.user_id == user.id)
        )
        client = result.scalar_one_or_none()
        if client is None:
            raise HTTPException(status_code=404, detail="Client not found")

        await db.delete(client)
        record_activity(db, user, "client_deleted", client.company_name)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Database error deleting client", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")

    await invalidate_entities(user.username, "client", "activity")
    return {"message": "Client deleted", "id": client_id}
