"""Monthly quota reset: refill each allocation to its quota on its reset day."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tokenledger.models.wallet import UserTokenAllocation
from tokenledger.services.ledger_service import append_transaction, ledger_transaction

logger = structlog.get_logger()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def reset_boundary(now: datetime, reset_day: int) -> datetime:
    """Most recent reset instant at or before ``now`` for a given reset day."""
    now = _as_utc(now)
    if now.day >= reset_day:
        return datetime(now.year, now.month, reset_day, tzinfo=timezone.utc)
    if now.month == 1:
        return datetime(now.year - 1, 12, reset_day, tzinfo=timezone.utc)
    return datetime(now.year, now.month - 1, reset_day, tzinfo=timezone.utc)


def is_reset_due(allocation: UserTokenAllocation, now: datetime) -> bool:
    boundary = reset_boundary(now, allocation.quota_reset_day)
    last = allocation.last_reset_at or allocation.created_at
    return _as_utc(last) < boundary


async def run_monthly_resets(db: AsyncSession, now: datetime | None = None) -> dict:
    """Reset every due allocation to its ``monthly_quota``.

    A row is only reset if its balance is unchanged since it was read, so a
    concurrent consumption simply defers that row to the next run.
    """
    now = _as_utc(now or datetime.now(timezone.utc))
    result = await db.execute(
        select(UserTokenAllocation)
        .order_by(UserTokenAllocation.created_at)
        .execution_options(populate_existing=True)
    )
    # Snapshot plain values; the loop commits once per row.
    candidates = [
        (
            a.id,
            a.organization_id,
            a.user_id,
            a.current_balance,
            a.monthly_quota,
            reset_boundary(now, a.quota_reset_day),
        )
        for a in result.scalars().all()
        if is_reset_due(a, now)
    ]

    reset_count = 0
    skipped = 0
    for allocation_id, organization_id, user_id, balance_before, quota, boundary in candidates:
        async with ledger_transaction(db):
            updated = await db.execute(
                update(UserTokenAllocation)
                .where(
                    UserTokenAllocation.id == allocation_id,
                    UserTokenAllocation.current_balance == balance_before,
                    or_(
                        UserTokenAllocation.last_reset_at.is_(None),
                        UserTokenAllocation.last_reset_at < boundary,
                    ),
                )
                .values(current_balance=quota, last_reset_at=now)
                .returning(UserTokenAllocation.current_balance)
                .execution_options(synchronize_session=False)
            )
            balance_after = updated.scalar_one_or_none()
            if balance_after is None:
                skipped += 1
                continue

            await append_transaction(
                db,
                organization_id=organization_id,
                user_id=user_id,
                transaction_type="monthly_reset",
                amount=abs(balance_after - balance_before),
                balance_before=balance_before,
                balance_after=balance_after,
                details={"monthly_quota": quota, "boundary": boundary.isoformat()},
            )
        reset_count += 1

    logger.info("quota_reset.complete", reset=reset_count, skipped=skipped)
    return {"reset": reset_count, "skipped": skipped}
