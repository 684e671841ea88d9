from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.core.database import get_db
from tokenledger.core.dependencies import get_org_admin, get_org_member
from tokenledger.models.user import User
from tokenledger.schemas.tokens import ActionCostResponse, ActionCostUpdate
from tokenledger.services import action_cost_service
from tokenledger.services.ledger_service import ledger_transaction

router = APIRouter(prefix="/action-costs", tags=["action-costs"])


@router.get("", response_model=list[ActionCostResponse])
async def list_action_costs(
    user: Annotated[User, Depends(get_org_member)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    costs = await action_cost_service.list_effective_costs(db, user.organization_id)
    return [ActionCostResponse.model_validate(c) for c in costs]


@router.put("/{action_type}", response_model=ActionCostResponse)
async def set_action_cost(
    action_type: str,
    body: ActionCostUpdate,
    admin: Annotated[User, Depends(get_org_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Override the price or gating of one action for the caller's organization."""
    async with ledger_transaction(db):
        await action_cost_service.set_override(
            db,
            organization_id=admin.organization_id,
            action_type=action_type,
            token_cost=body.token_cost,
            is_enabled=body.is_enabled,
            admin_only=body.admin_only,
        )
    resolved = await action_cost_service.resolve_cost(db, admin.organization_id, action_type)
    return ActionCostResponse.model_validate(resolved)


@router.delete("/{action_type}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_action_cost(
    action_type: str,
    admin: Annotated[User, Depends(get_org_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    async with ledger_transaction(db):
        removed = await action_cost_service.delete_override(db, admin.organization_id, action_type)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No override for this action")
