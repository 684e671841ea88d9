from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.core.database import get_db
from tokenledger.core.dependencies import get_current_user
from tokenledger.models.user import User
from tokenledger.schemas.tokens import JoinOrganizationRequest, JoinOrganizationResponse
from tokenledger.services.ledger_service import ledger_transaction
from tokenledger.services.membership_service import join_organization

router = APIRouter(prefix="/organizations", tags=["organizations"])


@router.post("/join", response_model=JoinOrganizationResponse)
async def join(
    body: JoinOrganizationRequest,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    async with ledger_transaction(db):
        org = await join_organization(db, user.id, body.invite_code)
    return JoinOrganizationResponse(organization_id=org.id, name=org.name)
