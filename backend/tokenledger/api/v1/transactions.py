import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.core.config import settings
from tokenledger.core.database import get_db
from tokenledger.core.dependencies import get_org_member
from tokenledger.models.user import User
from tokenledger.schemas.common import PaginatedResponse
from tokenledger.schemas.tokens import TokenTransactionResponse
from tokenledger.services import ledger_service
from tokenledger.services.membership_service import is_admin

router = APIRouter(prefix="/token-transactions", tags=["ledger"])


@router.get("", response_model=PaginatedResponse[TokenTransactionResponse])
async def list_token_transactions(
    user: Annotated[User, Depends(get_org_member)],
    db: Annotated[AsyncSession, Depends(get_db)],
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=settings.TOKEN_LEDGER_PAGE_SIZE_MAX),
    transaction_type: str | None = None,
    user_id: uuid.UUID | None = None,
):
    """Organization ledger, newest first. Members only see their own rows."""
    if not await is_admin(db, user.id, user.organization_id):
        user_id = user.id

    transactions, total = await ledger_service.list_transactions(
        db,
        organization_id=user.organization_id,
        page=page,
        page_size=page_size,
        transaction_type=transaction_type,
        user_id=user_id,
    )

    items = [
        TokenTransactionResponse(
            id=t.id,
            organization_id=t.organization_id,
            user_id=t.user_id,
            transaction_type=t.transaction_type,
            amount=t.amount,
            balance_before=t.balance_before,
            balance_after=t.balance_after,
            action_type=t.action_type,
            metadata=t.details,
            refund_of_id=t.refund_of_id,
            created_at=t.created_at,
        )
        for t in transactions
    ]

    pages = (total + page_size - 1) // page_size if page_size > 0 else 0
    return PaginatedResponse(items=items, total=total, page=page, page_size=page_size, pages=pages)
