"""Concurrent debits and grants against a real multi-connection database.

Each task opens its own session, so the guarded updates race at the storage
layer exactly as concurrent requests would.
"""

import asyncio

from sqlalchemy import select

from tests.conftest import create_allocation, create_test_user, create_wallet
from tokenledger.core.errors import InsufficientBalanceError, InsufficientOrgPoolError
from tokenledger.models.transaction import TokenTransaction
from tokenledger.models.wallet import OrganizationWallet, UserTokenAllocation
from tokenledger.services.action_cost_service import set_override
from tokenledger.services.allocation_service import allocate
from tokenledger.services.metering_service import consume


async def _consume_in_own_session(session_factory, user_id, org_id, action_type):
    async with session_factory() as session:
        try:
            return await consume(session, user_id, org_id, action_type)
        except InsufficientBalanceError as exc:
            return exc


async def _allocate_in_own_session(session_factory, admin_id, org_id, target_id, amount):
    async with session_factory() as session:
        try:
            return await allocate(session, admin_id, org_id, target_id, amount)
        except InsufficientOrgPoolError as exc:
            return exc


class TestConcurrentConsume:
    async def test_two_debits_one_remaining_cost(self, db, session_factory, org, member):
        await set_override(db, org.id, "ai_analytics", 60)
        await create_allocation(db, member, org, balance=100)
        await db.commit()

        # Two 60-token charges against 100: only one may land
        outcomes = await asyncio.gather(
            _consume_in_own_session(session_factory, member.id, org.id, "ai_analytics"),
            _consume_in_own_session(session_factory, member.id, org.id, "ai_analytics"),
        )

        successes = [o for o in outcomes if not isinstance(o, Exception)]
        failures = [o for o in outcomes if isinstance(o, InsufficientBalanceError)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert successes[0].balance_after == 40
        assert await _balance(db, member, org) == 40

    async def test_many_debits_never_overdraw(self, db, session_factory, org, member):
        wallet = await create_wallet(db, org, total=100, allocated=47)
        await create_allocation(db, member, org, balance=47)
        await db.commit()

        # ai_smart_reply costs 5: floor(47 / 5) == 9 can succeed
        outcomes = await asyncio.gather(
            *[
                _consume_in_own_session(session_factory, member.id, org.id, "ai_smart_reply")
                for _ in range(15)
            ]
        )

        successes = [o for o in outcomes if not isinstance(o, Exception)]
        failures = [o for o in outcomes if isinstance(o, InsufficientBalanceError)]
        assert len(successes) == 9
        assert len(failures) == 6
        assert await _balance(db, member, org) == 2

        logged = (
            await db.execute(
                select(TokenTransaction).where(
                    TokenTransaction.user_id == member.id,
                    TokenTransaction.transaction_type == "consumption",
                )
            )
        ).scalars().all()
        assert len(logged) == 9

        consumed = (
            await db.execute(
                select(OrganizationWallet.tokens_consumed).where(OrganizationWallet.id == wallet.id)
            )
        ).scalar_one()
        assert consumed == 45


class TestConcurrentAllocate:
    async def test_grants_never_exceed_pool(self, db, session_factory, org, admin):
        members = [await create_test_user(db, org) for _ in range(5)]
        await create_wallet(db, org, total=1000)
        await db.commit()

        outcomes = await asyncio.gather(
            *[_allocate_in_own_session(session_factory, admin.id, org.id, m.id, 300) for m in members]
        )

        successes = [o for o in outcomes if not isinstance(o, Exception)]
        assert len(successes) == 3
        total, allocated = (
            await db.execute(
                select(OrganizationWallet.total_tokens, OrganizationWallet.tokens_allocated).where(
                    OrganizationWallet.organization_id == org.id
                )
            )
        ).one()
        assert allocated == 900
        assert allocated <= total


async def _balance(db, user, org) -> int:
    result = await db.execute(
        select(UserTokenAllocation.current_balance).where(
            UserTokenAllocation.user_id == user.id,
            UserTokenAllocation.organization_id == org.id,
        )
    )
    return result.scalar_one()
