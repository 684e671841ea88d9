"""Organization membership and role checks used by the ledger services."""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.core.errors import InsufficientPrivilegeError, InvalidTargetError, ValidationError
from tokenledger.models.organization import Organization
from tokenledger.models.user import ADMIN_ROLES, User, UserRole
from tokenledger.models.wallet import UserTokenAllocation

logger = structlog.get_logger()


def dialect_insert(db: AsyncSession, model):
    """Dialect-specific INSERT supporting ``on_conflict_do_*``."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


async def get_role(db: AsyncSession, user_id: uuid.UUID, organization_id: uuid.UUID) -> str | None:
    result = await db.execute(
        select(UserRole.role).where(
            UserRole.user_id == user_id,
            UserRole.organization_id == organization_id,
        )
    )
    return result.scalar_one_or_none()


async def is_admin(db: AsyncSession, user_id: uuid.UUID, organization_id: uuid.UUID) -> bool:
    return await get_role(db, user_id, organization_id) in ADMIN_ROLES


async def require_admin(db: AsyncSession, user_id: uuid.UUID, organization_id: uuid.UUID) -> None:
    if not await is_admin(db, user_id, organization_id):
        raise InsufficientPrivilegeError("Insufficient privileges. Admin role required.")


async def require_member(db: AsyncSession, user_id: uuid.UUID, organization_id: uuid.UUID) -> User:
    """Return the active user if they belong to the organization."""
    result = await db.execute(
        select(User).where(
            User.id == user_id,
            User.organization_id == organization_id,
            User.is_active.is_(True),
        )
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise InvalidTargetError("Target user not in your organization", target_user_id=str(user_id))
    return user


async def join_organization(db: AsyncSession, user_id: uuid.UUID, invite_code: str) -> Organization:
    """Attach a user to the organization owning ``invite_code``.

    Creates the default ``user`` role and an empty allocation so the member
    shows up in allocation tooling before the first grant.
    """
    code = invite_code.strip().upper()
    if not code:
        raise ValidationError("Please enter an invite code")

    result = await db.execute(select(Organization).where(Organization.invite_code == code))
    org = result.scalar_one_or_none()
    if org is None:
        raise ValidationError("Invalid invite code")

    user = await db.get(User, user_id)
    if user is None:
        raise ValidationError("Unknown user")
    if user.organization_id is not None and user.organization_id != org.id:
        raise ValidationError("User already belongs to another organization")
    user.organization_id = org.id

    await db.execute(
        dialect_insert(db, UserRole)
        .values(id=uuid.uuid4(), user_id=user_id, organization_id=org.id, role="user")
        .on_conflict_do_nothing(index_elements=["user_id", "organization_id"])
    )
    await db.execute(
        dialect_insert(db, UserTokenAllocation)
        .values(id=uuid.uuid4(), user_id=user_id, organization_id=org.id, current_balance=0, monthly_quota=0)
        .on_conflict_do_nothing(index_elements=["user_id", "organization_id"])
    )
    await db.flush()

    logger.info("organization.joined", organization_id=str(org.id), user_id=str(user_id))
    return org
