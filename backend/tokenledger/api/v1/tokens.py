from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.core.database import get_db
from tokenledger.core.dependencies import get_org_member
from tokenledger.core.errors import NoAllocationError
from tokenledger.models.user import User
from tokenledger.models.wallet import UserTokenAllocation
from tokenledger.schemas.tokens import (
    AllocateRequest,
    AllocateResponse,
    AllocationResponse,
    ConsumeRequest,
    ConsumeResponse,
    RefundRequest,
    RefundResponse,
    RevokeRequest,
    RevokeResponse,
)
from tokenledger.services import allocation_service, metering_service

router = APIRouter(prefix="/tokens", tags=["tokens"])


@router.post("/consume", response_model=ConsumeResponse)
async def consume_tokens(
    body: ConsumeRequest,
    user: Annotated[User, Depends(get_org_member)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Meter one billable action against the caller's allocation."""
    result = await metering_service.consume(
        db,
        user_id=user.id,
        organization_id=user.organization_id,
        action_type=body.action_type,
        metadata=body.metadata,
    )
    return ConsumeResponse(
        consumed=result.consumed,
        balance_before=result.balance_before,
        balance_after=result.balance_after,
        transaction_id=result.transaction_id,
    )


@router.post("/refund", response_model=RefundResponse)
async def refund_tokens(
    body: RefundRequest,
    user: Annotated[User, Depends(get_org_member)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Compensate a prior consumption whose downstream action failed."""
    result = await metering_service.refund(
        db,
        user_id=user.id,
        organization_id=user.organization_id,
        amount=body.amount,
        reason=body.reason,
        refund_of=body.refund_of,
    )
    return RefundResponse(
        refunded=result.refunded,
        balance_after=result.balance_after,
        transaction_id=result.transaction_id,
        duplicate=result.duplicate,
    )


@router.get("/balance", response_model=AllocationResponse)
async def get_balance(
    user: Annotated[User, Depends(get_org_member)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    result = await db.execute(
        select(UserTokenAllocation).where(
            UserTokenAllocation.user_id == user.id,
            UserTokenAllocation.organization_id == user.organization_id,
        )
    )
    allocation = result.scalar_one_or_none()
    if allocation is None:
        raise NoAllocationError()
    return AllocationResponse.model_validate(allocation)


@router.post("/allocate", response_model=AllocateResponse)
async def allocate_tokens(
    body: AllocateRequest,
    admin: Annotated[User, Depends(get_org_member)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Grant tokens from the organization pool to a member. Admin only."""
    result = await allocation_service.allocate(
        db,
        admin_id=admin.id,
        organization_id=admin.organization_id,
        target_user_id=body.target_user_id,
        amount=body.amount,
        monthly_quota=body.monthly_quota,
    )
    return AllocateResponse(
        allocated=result.allocated,
        balance_after=result.balance_after,
        monthly_quota=result.monthly_quota,
    )


@router.post("/revoke", response_model=RevokeResponse)
async def revoke_tokens(
    body: RevokeRequest,
    admin: Annotated[User, Depends(get_org_member)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    result = await allocation_service.revoke(
        db,
        admin_id=admin.id,
        organization_id=admin.organization_id,
        target_user_id=body.target_user_id,
        amount=body.amount,
        reason=body.reason,
    )
    return RevokeResponse(revoked=result.revoked, balance_after=result.balance_after)
