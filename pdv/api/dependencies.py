"""
Shared FastAPI dependencies for the API routers.
"""

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ..core.database import get_database_session
from ..core.security import request_username
from ..models import User, UserActivity

logger = structlog.get_logger()


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_database_session),
) -> User:
    """Resolve the caller from the ``auth_token`` cookie."""
    username = request_username(request)
    if username is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        result = await db.execute(select(User).where(User.username == username))
        user = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error("Database error resolving user", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")

    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def record_activity(
    db: AsyncSession, user: User, action: str, details: str = None
) -> None:
    """Stage an audit row; committed with the caller's transaction."""
    db.add(UserActivity(user_id=user.id, action=action, details=details))
