from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.core.database import get_db
from tokenledger.core.dependencies import get_org_admin, get_org_member
from tokenledger.core.errors import WalletNotFoundError
from tokenledger.models.user import User
from tokenledger.schemas.tokens import PurchaseRequest, PurchaseResponse, WalletResponse
from tokenledger.services import wallet_service

router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.get("", response_model=WalletResponse)
async def get_wallet(
    admin: Annotated[User, Depends(get_org_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    wallet = await wallet_service.get_wallet(db, admin.organization_id)
    if wallet is None:
        raise WalletNotFoundError()
    return WalletResponse.model_validate(wallet)


@router.post("/purchase", response_model=PurchaseResponse)
async def purchase_tokens(
    body: PurchaseRequest,
    admin: Annotated[User, Depends(get_org_member)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Credit purchased tokens to the organization pool."""
    result = await wallet_service.purchase(db, actor_id=admin.id, organization_id=admin.organization_id, amount=body.amount)
    return PurchaseResponse(
        purchased=result.purchased,
        total_tokens=result.total_after,
        tokens_expire_at=result.tokens_expire_at,
    )
