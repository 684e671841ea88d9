"""Allocation engine: admin grants and revocations between the org pool and members."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.core.errors import (
    InsufficientBalanceError,
    InsufficientOrgPoolError,
    NoAllocationError,
    ValidationError,
    WalletNotFoundError,
)
from tokenledger.models.wallet import OrganizationWallet, UserTokenAllocation
from tokenledger.services.ledger_service import append_transaction, ledger_transaction
from tokenledger.services.membership_service import dialect_insert, require_admin, require_member

logger = structlog.get_logger()


@dataclass(frozen=True)
class AllocateResult:
    allocated: int
    balance_before: int
    balance_after: int
    monthly_quota: int
    transaction_id: uuid.UUID


@dataclass(frozen=True)
class RevokeResult:
    revoked: int
    balance_after: int
    transaction_id: uuid.UUID


async def _pool_snapshot(db: AsyncSession, organization_id: uuid.UUID) -> OrganizationWallet:
    result = await db.execute(
        select(OrganizationWallet)
        .where(OrganizationWallet.organization_id == organization_id)
        .execution_options(populate_existing=True)
    )
    wallet = result.scalar_one_or_none()
    if wallet is None:
        raise WalletNotFoundError()
    return wallet


async def _draw_from_pool(db: AsyncSession, organization_id: uuid.UUID, amount: int) -> None:
    """Reserve ``amount`` of the unallocated pool with one guarded update."""
    result = await db.execute(
        update(OrganizationWallet)
        .where(
            OrganizationWallet.organization_id == organization_id,
            OrganizationWallet.total_tokens - OrganizationWallet.tokens_allocated >= amount,
        )
        .values(tokens_allocated=OrganizationWallet.tokens_allocated + amount)
        .returning(OrganizationWallet.tokens_allocated)
    )
    if result.scalar_one_or_none() is None:
        wallet = await _pool_snapshot(db, organization_id)
        raise InsufficientOrgPoolError(available=wallet.available_tokens, requested=amount)


async def allocate(
    db: AsyncSession,
    admin_id: uuid.UUID,
    organization_id: uuid.UUID,
    target_user_id: uuid.UUID,
    amount: int,
    monthly_quota: int | None = None,
) -> AllocateResult:
    """Grant ``amount`` tokens from the organization pool to a member."""
    if amount < 0:
        raise ValidationError("Amount must be non-negative")
    if monthly_quota is not None and monthly_quota < 0:
        raise ValidationError("monthly_quota must be non-negative")

    async with ledger_transaction(db):
        await require_admin(db, admin_id, organization_id)
        await require_member(db, target_user_id, organization_id)

        await _draw_from_pool(db, organization_id, amount)

        set_ = {
            "current_balance": UserTokenAllocation.current_balance + amount,
            "allocated_by": admin_id,
        }
        if monthly_quota is not None:
            set_["monthly_quota"] = monthly_quota

        result = await db.execute(
            dialect_insert(db, UserTokenAllocation)
            .values(
                id=uuid.uuid4(),
                user_id=target_user_id,
                organization_id=organization_id,
                current_balance=amount,
                monthly_quota=monthly_quota if monthly_quota is not None else amount,
                allocated_by=admin_id,
            )
            .on_conflict_do_update(index_elements=["user_id", "organization_id"], set_=set_)
            .returning(UserTokenAllocation.current_balance, UserTokenAllocation.monthly_quota)
        )
        balance_after, new_quota = result.one()
        balance_before = balance_after - amount

        txn = await append_transaction(
            db,
            organization_id=organization_id,
            user_id=target_user_id,
            transaction_type="allocation",
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            details={"allocated_by": str(admin_id), "monthly_quota": new_quota},
        )

    logger.info(
        "tokens.allocated",
        organization_id=str(organization_id),
        admin_id=str(admin_id),
        target_user_id=str(target_user_id),
        amount=amount,
        balance_after=balance_after,
    )
    return AllocateResult(
        allocated=amount,
        balance_before=balance_before,
        balance_after=balance_after,
        monthly_quota=new_quota,
        transaction_id=txn.id,
    )


async def revoke(
    db: AsyncSession,
    admin_id: uuid.UUID,
    organization_id: uuid.UUID,
    target_user_id: uuid.UUID,
    amount: int,
    reason: str | None = None,
) -> RevokeResult:
    """Return ``amount`` of a member's unspent balance to the organization pool."""
    if amount <= 0:
        raise ValidationError("Amount must be positive")

    async with ledger_transaction(db):
        await require_admin(db, admin_id, organization_id)
        await require_member(db, target_user_id, organization_id)

        # Never return more to the pool than it counts as allocated.
        pool = await db.execute(
            update(OrganizationWallet)
            .where(
                OrganizationWallet.organization_id == organization_id,
                OrganizationWallet.tokens_allocated >= amount,
            )
            .values(tokens_allocated=OrganizationWallet.tokens_allocated - amount)
            .returning(OrganizationWallet.tokens_allocated)
        )
        if pool.scalar_one_or_none() is None:
            wallet = await _pool_snapshot(db, organization_id)
            raise ValidationError(
                "Cannot revoke more than the organization has allocated",
                requested=amount,
                allocated=wallet.tokens_allocated,
            )

        result = await db.execute(
            update(UserTokenAllocation)
            .where(
                UserTokenAllocation.user_id == target_user_id,
                UserTokenAllocation.organization_id == organization_id,
                UserTokenAllocation.current_balance >= amount,
            )
            .values(current_balance=UserTokenAllocation.current_balance - amount)
            .returning(UserTokenAllocation.current_balance)
        )
        balance_after = result.scalar_one_or_none()
        if balance_after is None:
            current = await db.execute(
                select(UserTokenAllocation.current_balance).where(
                    UserTokenAllocation.user_id == target_user_id,
                    UserTokenAllocation.organization_id == organization_id,
                )
            )
            available = current.scalar_one_or_none()
            if available is None:
                raise NoAllocationError()
            raise InsufficientBalanceError(required=amount, available=available)

        txn = await append_transaction(
            db,
            organization_id=organization_id,
            user_id=target_user_id,
            transaction_type="revocation",
            amount=amount,
            balance_before=balance_after + amount,
            balance_after=balance_after,
            details={"revoked_by": str(admin_id), "reason": reason},
        )

    logger.info(
        "tokens.revoked",
        organization_id=str(organization_id),
        admin_id=str(admin_id),
        target_user_id=str(target_user_id),
        amount=amount,
        balance_after=balance_after,
    )
    return RevokeResult(revoked=amount, balance_after=balance_after, transaction_id=txn.id)
