import uuid
from typing import Annotated

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.core.database import get_db
from tokenledger.core.security import decode_token
from tokenledger.models.user import User
from tokenledger.services.membership_service import is_admin

logger = structlog.get_logger()
security = HTTPBearer()


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
    request: Request,
) -> User:
    token = credentials.credentials
    payload = decode_token(token)
    if payload is None or payload.get("type") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        parsed_id = uuid.UUID(user_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    result = await db.execute(select(User).where(User.id == parsed_id, User.is_active.is_(True)))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    # Bind structured logging context
    structlog.contextvars.bind_contextvars(
        organization_id=str(user.organization_id) if user.organization_id else None,
        user_id=str(user.id),
    )

    request.state.user = user
    return user


async def get_org_member(
    user: Annotated[User, Depends(get_current_user)],
) -> User:
    """Dependency for ledger endpoints: the caller must belong to an organization."""
    if user.organization_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User not in an organization")
    return user


async def get_org_admin(
    user: Annotated[User, Depends(get_org_member)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Dependency that requires an admin or super_admin role in the caller's organization."""
    if not await is_admin(db, user.id, user.organization_id):
        logger.warning("admin_required_denied")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient privileges. Admin role required.",
        )
    return user
