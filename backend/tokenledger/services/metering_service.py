"""Metering engine: gate a billable action behind an atomic balance debit.

The debit is a single guarded UPDATE (``WHERE current_balance >= cost``)
rather than read-then-write, so concurrent consumers of one allocation can
never both spend the last tokens. A caller that loses the race gets a fresh
InsufficientBalanceError; nothing is retried.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.core.errors import (
    ActionDisabledError,
    InsufficientBalanceError,
    InsufficientPrivilegeError,
    NoAllocationError,
    ValidationError,
)
from tokenledger.models.transaction import TokenTransaction
from tokenledger.models.wallet import OrganizationWallet, UserTokenAllocation
from tokenledger.services.action_cost_service import resolve_cost
from tokenledger.services.ledger_service import append_transaction, ledger_transaction
from tokenledger.services.membership_service import is_admin

logger = structlog.get_logger()


@dataclass(frozen=True)
class ConsumeResult:
    consumed: int
    balance_before: int
    balance_after: int
    transaction_id: uuid.UUID
    action_type: str


@dataclass(frozen=True)
class RefundResult:
    refunded: int
    balance_after: int
    transaction_id: uuid.UUID
    duplicate: bool = False


async def _current_balance(db: AsyncSession, user_id: uuid.UUID, organization_id: uuid.UUID) -> int | None:
    result = await db.execute(
        select(UserTokenAllocation.current_balance).where(
            UserTokenAllocation.user_id == user_id,
            UserTokenAllocation.organization_id == organization_id,
        )
    )
    return result.scalar_one_or_none()


async def _adjust_consumed(db: AsyncSession, organization_id: uuid.UUID, delta: int) -> None:
    """Move the wallet's consumed counter; never drives it below zero."""
    stmt = update(OrganizationWallet).where(OrganizationWallet.organization_id == organization_id)
    if delta < 0:
        stmt = stmt.where(OrganizationWallet.tokens_consumed >= -delta)
    await db.execute(stmt.values(tokens_consumed=OrganizationWallet.tokens_consumed + delta))


async def consume(
    db: AsyncSession,
    user_id: uuid.UUID,
    organization_id: uuid.UUID,
    action_type: str,
    metadata: dict | None = None,
) -> ConsumeResult:
    """Charge ``user_id`` for one ``action_type`` and log the consumption."""
    async with ledger_transaction(db):
        resolved = await resolve_cost(db, organization_id, action_type)
        if not resolved.enabled:
            raise ActionDisabledError(action_type)

        if resolved.admin_only and not await is_admin(db, user_id, organization_id):
            raise InsufficientPrivilegeError("This action requires admin privileges")

        cost = resolved.cost
        available = await _current_balance(db, user_id, organization_id)
        if available is None:
            raise NoAllocationError()
        if available < cost:
            raise InsufficientBalanceError(required=cost, available=available)

        # Wallet row first: every multi-row ledger operation locks
        # wallet -> allocation in that order.
        await _adjust_consumed(db, organization_id, cost)

        result = await db.execute(
            update(UserTokenAllocation)
            .where(
                UserTokenAllocation.user_id == user_id,
                UserTokenAllocation.organization_id == organization_id,
                UserTokenAllocation.current_balance >= cost,
            )
            .values(current_balance=UserTokenAllocation.current_balance - cost)
            .returning(UserTokenAllocation.current_balance)
        )
        balance_after = result.scalar_one_or_none()
        if balance_after is None:
            # Lost the race to a concurrent debit
            latest = await _current_balance(db, user_id, organization_id)
            raise InsufficientBalanceError(required=cost, available=latest or 0)

        balance_before = balance_after + cost
        txn = await append_transaction(
            db,
            organization_id=organization_id,
            user_id=user_id,
            transaction_type="consumption",
            amount=cost,
            balance_before=balance_before,
            balance_after=balance_after,
            action_type=action_type,
            details=metadata,
        )

    logger.info(
        "tokens.consumed",
        organization_id=str(organization_id),
        user_id=str(user_id),
        action_type=action_type,
        cost=cost,
        balance_after=balance_after,
    )
    return ConsumeResult(
        consumed=cost,
        balance_before=balance_before,
        balance_after=balance_after,
        transaction_id=txn.id,
        action_type=action_type,
    )


async def refund(
    db: AsyncSession,
    user_id: uuid.UUID,
    organization_id: uuid.UUID,
    amount: int | None = None,
    reason: str = "",
    refund_of: uuid.UUID | None = None,
) -> RefundResult:
    """Reverse a prior debit whose downstream action failed.

    With ``refund_of`` (the consumption transaction id) the refund happens at
    most once; a repeat returns the original refund flagged ``duplicate``.
    Without it every call credits the user again.
    """
    async with ledger_transaction(db):
        original: TokenTransaction | None = None
        if refund_of is not None:
            existing = await db.execute(
                select(TokenTransaction).where(TokenTransaction.refund_of_id == refund_of)
            )
            prior = existing.scalar_one_or_none()
            if prior is not None:
                logger.info("tokens.refund_duplicate", refund_of=str(refund_of), transaction_id=str(prior.id))
                return RefundResult(
                    refunded=prior.amount,
                    balance_after=prior.balance_after or 0,
                    transaction_id=prior.id,
                    duplicate=True,
                )

            original = await db.get(TokenTransaction, refund_of)
            if (
                original is None
                or original.transaction_type != "consumption"
                or original.user_id != user_id
                or original.organization_id != organization_id
            ):
                raise ValidationError("refund_of must reference one of your consumption transactions")
            if amount is None:
                amount = original.amount
            if amount > original.amount:
                raise ValidationError(
                    "Refund exceeds the original charge", requested=amount, charged=original.amount
                )
        else:
            logger.warning(
                "tokens.refund_unkeyed",
                organization_id=str(organization_id),
                user_id=str(user_id),
                amount=amount,
            )

        if amount is None or amount <= 0:
            raise ValidationError("Refund amount must be positive")

        await _adjust_consumed(db, organization_id, -amount)

        result = await db.execute(
            update(UserTokenAllocation)
            .where(
                UserTokenAllocation.user_id == user_id,
                UserTokenAllocation.organization_id == organization_id,
            )
            .values(current_balance=UserTokenAllocation.current_balance + amount)
            .returning(UserTokenAllocation.current_balance)
        )
        balance_after = result.scalar_one_or_none()
        if balance_after is None:
            raise NoAllocationError()

        txn = await append_transaction(
            db,
            organization_id=organization_id,
            user_id=user_id,
            transaction_type="refund",
            amount=amount,
            balance_before=balance_after - amount,
            balance_after=balance_after,
            action_type=original.action_type if original else None,
            details={"reason": reason},
            refund_of_id=refund_of,
        )

    logger.info(
        "tokens.refunded",
        organization_id=str(organization_id),
        user_id=str(user_id),
        amount=amount,
        refund_of=str(refund_of) if refund_of else None,
        reason=reason,
    )
    return RefundResult(refunded=amount, balance_after=balance_after, transaction_id=txn.id)


@asynccontextmanager
async def metered(
    db: AsyncSession,
    user_id: uuid.UUID,
    organization_id: uuid.UUID,
    action_type: str,
    metadata: dict | None = None,
) -> AsyncIterator[ConsumeResult]:
    """Pre-debit an action and refund it if the body raises.

    Usage::

        async with metered(db, user.id, org_id, "ai_summary") as charge:
            reply = await call_provider(...)
    """
    charge = await consume(db, user_id, organization_id, action_type, metadata)
    try:
        yield charge
    except Exception as exc:
        await refund(
            db,
            user_id,
            organization_id,
            reason=f"{action_type} failed: {type(exc).__name__}",
            refund_of=charge.transaction_id,
        )
        raise
