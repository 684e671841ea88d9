"""Tests for monthly quota resets."""

from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from tests.conftest import create_allocation, create_test_user
from tokenledger.models.transaction import TokenTransaction
from tokenledger.models.wallet import UserTokenAllocation
from tokenledger.services.quota_reset_service import reset_boundary, run_monthly_resets


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


async def allocation_row(db, user, org) -> UserTokenAllocation:
    result = await db.execute(
        select(UserTokenAllocation)
        .where(UserTokenAllocation.user_id == user.id, UserTokenAllocation.organization_id == org.id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def reset_rows(db) -> list[TokenTransaction]:
    result = await db.execute(
        select(TokenTransaction).where(TokenTransaction.transaction_type == "monthly_reset")
    )
    return list(result.scalars().all())


class TestResetBoundary:
    def test_on_or_after_reset_day(self):
        assert reset_boundary(utc(2026, 5, 15, 9), 15) == utc(2026, 5, 15)
        assert reset_boundary(utc(2026, 5, 20), 15) == utc(2026, 5, 15)

    def test_before_reset_day_uses_previous_month(self):
        assert reset_boundary(utc(2026, 5, 10), 15) == utc(2026, 4, 15)

    def test_january_wraps_to_december(self):
        assert reset_boundary(utc(2026, 1, 3), 5) == utc(2025, 12, 5)

    def test_naive_input_treated_as_utc(self):
        assert reset_boundary(datetime(2026, 5, 20), 1) == utc(2026, 5, 1)


class TestRunMonthlyResets:
    async def test_due_allocation_refilled_to_quota(self, db, org, member):
        await create_allocation(db, member, org, balance=12, monthly_quota=200, last_reset_at=utc(2026, 4, 1))
        await db.commit()
        now = utc(2026, 5, 2, 3)

        summary = await run_monthly_resets(db, now=now)

        assert summary == {"reset": 1, "skipped": 0}
        allocation = await allocation_row(db, member, org)
        assert allocation.current_balance == 200
        assert allocation.last_reset_at.replace(tzinfo=timezone.utc) == now

        rows = await reset_rows(db)
        assert len(rows) == 1
        assert rows[0].user_id == member.id
        assert rows[0].balance_before == 12
        assert rows[0].balance_after == 200
        assert rows[0].amount == 188
        assert rows[0].signed_amount == 188

    async def test_reset_can_lower_balance(self, db, org, member):
        await create_allocation(db, member, org, balance=500, monthly_quota=100, last_reset_at=utc(2026, 4, 1))
        await db.commit()

        await run_monthly_resets(db, now=utc(2026, 5, 1))

        assert (await allocation_row(db, member, org)).current_balance == 100
        row = (await reset_rows(db))[0]
        assert row.amount == 400
        assert row.signed_amount == -400

    async def test_not_due_before_reset_day(self, db, org, member):
        await create_allocation(
            db, member, org, balance=5, monthly_quota=50, quota_reset_day=15, last_reset_at=utc(2026, 4, 15)
        )
        await db.commit()

        assert await run_monthly_resets(db, now=utc(2026, 5, 14, 23)) == {"reset": 0, "skipped": 0}
        assert (await allocation_row(db, member, org)).current_balance == 5

        assert await run_monthly_resets(db, now=utc(2026, 5, 15)) == {"reset": 1, "skipped": 0}
        assert (await allocation_row(db, member, org)).current_balance == 50

    async def test_second_run_in_same_period_is_a_no_op(self, db, org, member):
        await create_allocation(db, member, org, balance=0, monthly_quota=80, last_reset_at=utc(2026, 4, 1))
        await db.commit()
        now = utc(2026, 5, 3)

        await run_monthly_resets(db, now=now)
        summary = await run_monthly_resets(db, now=now + timedelta(hours=6))

        assert summary == {"reset": 0, "skipped": 0}
        assert len(await reset_rows(db)) == 1

    async def test_never_reset_falls_back_to_creation_time(self, db, org, member):
        await create_allocation(db, member, org, balance=3, monthly_quota=30)
        await db.commit()

        # Created during the current period, so nothing is due yet
        assert (await run_monthly_resets(db))["reset"] == 0

        later = datetime.now(timezone.utc) + timedelta(days=40)
        assert (await run_monthly_resets(db, now=later))["reset"] == 1
        assert (await allocation_row(db, member, org)).current_balance == 30

    async def test_each_member_uses_own_reset_day(self, db, org, member):
        late = await create_test_user(db, org)
        await create_allocation(db, member, org, balance=0, monthly_quota=10, last_reset_at=utc(2026, 4, 1))
        await create_allocation(
            db, late, org, balance=0, monthly_quota=20, quota_reset_day=20, last_reset_at=utc(2026, 4, 20)
        )
        await db.commit()

        summary = await run_monthly_resets(db, now=utc(2026, 5, 5))

        assert summary["reset"] == 1
        assert (await allocation_row(db, member, org)).current_balance == 10
        assert (await allocation_row(db, late, org)).current_balance == 0
