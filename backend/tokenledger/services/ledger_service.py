"""Transaction ledger: the append-only audit trail of every balance change.

All balance-mutating services run inside :func:`ledger_transaction`, so the
mutation and its ledger row commit together or not at all.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.core.errors import LedgerError, StorageError, ValidationError
from tokenledger.models.transaction import TRANSACTION_TYPES, TokenTransaction

logger = structlog.get_logger()


@asynccontextmanager
async def ledger_transaction(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Commit on success, roll back on any error.

    Database failures surface as :class:`StorageError`; typed ledger errors
    propagate unchanged.
    """
    try:
        yield db
        await db.commit()
    except LedgerError:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("ledger.storage_error")
        raise StorageError("Ledger storage unavailable") from exc
    except BaseException:
        await db.rollback()
        raise


async def append_transaction(
    db: AsyncSession,
    organization_id: uuid.UUID,
    transaction_type: str,
    amount: int,
    user_id: uuid.UUID | None = None,
    balance_before: int | None = None,
    balance_after: int | None = None,
    action_type: str | None = None,
    details: dict | None = None,
    refund_of_id: uuid.UUID | None = None,
) -> TokenTransaction:
    """Append a ledger row. Insert-only; rows are never updated or deleted."""
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"Unknown transaction type: {transaction_type}")

    txn = TokenTransaction(
        organization_id=organization_id,
        user_id=user_id,
        transaction_type=transaction_type,
        amount=amount,
        balance_before=balance_before,
        balance_after=balance_after,
        action_type=action_type,
        details=details or {},
        refund_of_id=refund_of_id,
    )
    db.add(txn)
    await db.flush()
    return txn


async def list_transactions(
    db: AsyncSession,
    organization_id: uuid.UUID,
    page: int = 1,
    page_size: int = 50,
    transaction_type: str | None = None,
    user_id: uuid.UUID | None = None,
) -> tuple[list[TokenTransaction], int]:
    """Return one page of an organization's ledger, newest first, plus the total count."""
    if page < 1 or page_size < 1:
        raise ValidationError("page and page_size must be positive")

    query = select(TokenTransaction).where(TokenTransaction.organization_id == organization_id)
    count_query = (
        select(func.count())
        .select_from(TokenTransaction)
        .where(TokenTransaction.organization_id == organization_id)
    )

    if transaction_type:
        query = query.where(TokenTransaction.transaction_type == transaction_type)
        count_query = count_query.where(TokenTransaction.transaction_type == transaction_type)
    if user_id:
        query = query.where(TokenTransaction.user_id == user_id)
        count_query = count_query.where(TokenTransaction.user_id == user_id)

    total = (await db.execute(count_query)).scalar() or 0

    offset = (page - 1) * page_size
    query = query.order_by(TokenTransaction.created_at.desc()).offset(offset).limit(page_size)
    result = await db.execute(query)
    return list(result.scalars().all()), total


async def user_history(
    db: AsyncSession, organization_id: uuid.UUID, user_id: uuid.UUID
) -> list[TokenTransaction]:
    """Every ledger row touching a user's allocation, oldest first."""
    result = await db.execute(
        select(TokenTransaction)
        .where(
            TokenTransaction.organization_id == organization_id,
            TokenTransaction.user_id == user_id,
        )
        .order_by(TokenTransaction.created_at.asc())
    )
    return list(result.scalars().all())


def replay_balance(transactions: Iterable[TokenTransaction], initial: int = 0) -> int:
    """Rebuild a user's balance from their ledger history."""
    balance = initial
    for txn in transactions:
        balance += txn.signed_amount
    return balance
