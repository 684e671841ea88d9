"""Action cost catalog: per-organization overrides over global defaults."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.core.errors import UnknownActionError, ValidationError
from tokenledger.models.action_cost import ACTION_TYPES, ActionCost

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class ResolvedCost:
    action_type: str
    cost: int
    enabled: bool
    admin_only: bool
    source: str  # "organization" or "global"


async def resolve_override(
    db: AsyncSession,
    model: type[T],
    organization_id: uuid.UUID | None,
    *criteria: Any,
) -> T | None:
    """Fetch the highest-priority row of a per-org override table.

    ``model`` must have a nullable ``organization_id`` column where NULL marks
    the global default. The organization's own row wins when both exist.
    """
    org_col = model.organization_id  # type: ignore[attr-defined]
    query = (
        select(model)
        .where(or_(org_col == organization_id, org_col.is_(None)), *criteria)
        .order_by(org_col.is_(None))
        .limit(1)
    )
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def resolve_cost(db: AsyncSession, organization_id: uuid.UUID, action_type: str) -> ResolvedCost:
    row = await resolve_override(db, ActionCost, organization_id, ActionCost.action_type == action_type)
    if row is None:
        raise UnknownActionError(action_type)
    return ResolvedCost(
        action_type=row.action_type,
        cost=row.token_cost,
        enabled=bool(row.is_enabled),
        admin_only=bool(row.admin_only),
        source="global" if row.organization_id is None else "organization",
    )


async def list_effective_costs(db: AsyncSession, organization_id: uuid.UUID) -> list[ResolvedCost]:
    """Every action type priced for the organization, overrides applied."""
    result = await db.execute(
        select(ActionCost).where(
            or_(ActionCost.organization_id == organization_id, ActionCost.organization_id.is_(None))
        )
    )
    effective: dict[str, ActionCost] = {}
    for row in result.scalars().all():
        current = effective.get(row.action_type)
        if current is None or current.organization_id is None:
            effective[row.action_type] = row

    return [
        ResolvedCost(
            action_type=row.action_type,
            cost=row.token_cost,
            enabled=bool(row.is_enabled),
            admin_only=bool(row.admin_only),
            source="global" if row.organization_id is None else "organization",
        )
        for row in sorted(effective.values(), key=lambda r: r.action_type)
    ]


async def set_override(
    db: AsyncSession,
    organization_id: uuid.UUID,
    action_type: str,
    token_cost: int,
    is_enabled: bool = True,
    admin_only: bool = False,
) -> ActionCost:
    """Create or replace the organization's override for one action type."""
    if action_type not in ACTION_TYPES:
        raise UnknownActionError(action_type)
    if token_cost < 0:
        raise ValidationError("token_cost must be non-negative")

    result = await db.execute(
        select(ActionCost).where(
            ActionCost.organization_id == organization_id,
            ActionCost.action_type == action_type,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = ActionCost(organization_id=organization_id, action_type=action_type, token_cost=token_cost)
        db.add(row)
    row.token_cost = token_cost
    row.is_enabled = is_enabled
    row.admin_only = admin_only
    await db.flush()

    logger.info(
        "action_cost.override_set",
        organization_id=str(organization_id),
        action_type=action_type,
        token_cost=token_cost,
        is_enabled=is_enabled,
        admin_only=admin_only,
    )
    return row


async def delete_override(db: AsyncSession, organization_id: uuid.UUID, action_type: str) -> bool:
    """Drop the organization's override so the global default applies again."""
    result = await db.execute(
        delete(ActionCost).where(
            ActionCost.organization_id == organization_id,
            ActionCost.action_type == action_type,
        )
    )
    removed = (result.rowcount or 0) > 0
    if removed:
        logger.info("action_cost.override_deleted", organization_id=str(organization_id), action_type=action_type)
    return removed
