"""Organization wallet: purchases into the pool and expiry of unallocated tokens."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.core.config import settings
from tokenledger.core.errors import ValidationError
from tokenledger.models.wallet import OrganizationWallet
from tokenledger.services.ledger_service import append_transaction, ledger_transaction
from tokenledger.services.membership_service import dialect_insert, require_admin

logger = structlog.get_logger()


@dataclass(frozen=True)
class PurchaseResult:
    purchased: int
    total_before: int
    total_after: int
    tokens_expire_at: datetime | None
    transaction_id: uuid.UUID


async def get_wallet(db: AsyncSession, organization_id: uuid.UUID) -> OrganizationWallet | None:
    result = await db.execute(
        select(OrganizationWallet).where(OrganizationWallet.organization_id == organization_id)
    )
    return result.scalar_one_or_none()


async def ensure_wallet(db: AsyncSession, organization_id: uuid.UUID) -> None:
    """Create the organization's empty wallet if it does not exist yet."""
    await db.execute(
        dialect_insert(db, OrganizationWallet)
        .values(id=uuid.uuid4(), organization_id=organization_id)
        .on_conflict_do_nothing(index_elements=["organization_id"])
    )


async def purchase(
    db: AsyncSession,
    actor_id: uuid.UUID,
    organization_id: uuid.UUID,
    amount: int,
    metadata: dict | None = None,
    now: datetime | None = None,
) -> PurchaseResult:
    """Add purchased tokens to the organization pool.

    Payment capture is out of scope; callers invoke this once the payment
    provider has confirmed the charge.
    """
    if amount <= 0:
        raise ValidationError("Please select or enter a valid token amount")
    now = now or datetime.now(timezone.utc)
    expires_at = None
    if settings.TOKEN_EXPIRY_DAYS > 0:
        expires_at = now + timedelta(days=settings.TOKEN_EXPIRY_DAYS)

    async with ledger_transaction(db):
        await require_admin(db, actor_id, organization_id)
        await ensure_wallet(db, organization_id)

        values = {
            "total_tokens": OrganizationWallet.total_tokens + amount,
            "tokens_purchased": OrganizationWallet.tokens_purchased + amount,
            "last_purchase_at": now,
        }
        if expires_at is not None:
            values["tokens_expire_at"] = expires_at

        result = await db.execute(
            update(OrganizationWallet)
            .where(OrganizationWallet.organization_id == organization_id)
            .values(**values)
            .returning(OrganizationWallet.total_tokens)
        )
        total_after = result.scalar_one()

        txn = await append_transaction(
            db,
            organization_id=organization_id,
            transaction_type="purchase",
            amount=amount,
            balance_before=total_after - amount,
            balance_after=total_after,
            details={"purchased_by": str(actor_id), **(metadata or {})},
        )

    logger.info(
        "wallet.purchase",
        organization_id=str(organization_id),
        actor_id=str(actor_id),
        amount=amount,
        total_tokens=total_after,
    )
    return PurchaseResult(
        purchased=amount,
        total_before=total_after - amount,
        total_after=total_after,
        tokens_expire_at=expires_at,
        transaction_id=txn.id,
    )


async def expire_wallets(db: AsyncSession, now: datetime | None = None) -> dict:
    """Expire the unallocated remainder of every wallet past ``tokens_expire_at``.

    Tokens already granted to members are untouched; only
    ``total_tokens - tokens_allocated`` is written off.
    """
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(OrganizationWallet.organization_id).where(
            OrganizationWallet.tokens_expire_at.isnot(None),
            OrganizationWallet.tokens_expire_at <= now,
        )
    )
    organization_ids = list(result.scalars().all())

    expired_wallets = 0
    expired_tokens = 0
    for organization_id in organization_ids:
        async with ledger_transaction(db):
            before = await db.execute(
                select(OrganizationWallet.total_tokens, OrganizationWallet.tokens_allocated).where(
                    OrganizationWallet.organization_id == organization_id
                )
            )
            total_before, allocated = before.one()

            # Guarded on the values just read so a concurrent purchase or
            # allocation makes this row a no-op until the next run.
            updated = await db.execute(
                update(OrganizationWallet)
                .where(
                    OrganizationWallet.organization_id == organization_id,
                    OrganizationWallet.total_tokens == total_before,
                    OrganizationWallet.tokens_allocated == allocated,
                    OrganizationWallet.tokens_expire_at <= now,
                )
                .values(total_tokens=allocated, tokens_expire_at=None)
                .returning(OrganizationWallet.total_tokens)
                .execution_options(synchronize_session=False)
            )
            if updated.scalar_one_or_none() is None:
                continue

            amount = total_before - allocated
            await append_transaction(
                db,
                organization_id=organization_id,
                transaction_type="expiration",
                amount=amount,
                balance_before=total_before,
                balance_after=allocated,
                details={"expired_at": now.isoformat()},
            )
        expired_wallets += 1
        expired_tokens += amount
        logger.info("wallet.tokens_expired", organization_id=str(organization_id), amount=amount)

    return {"wallets": expired_wallets, "tokens": expired_tokens}
