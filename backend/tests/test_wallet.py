"""Tests for wallet purchases and expiry of unallocated tokens."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from tests.conftest import create_wallet
from tokenledger.core.config import settings
from tokenledger.core.errors import InsufficientPrivilegeError, ValidationError
from tokenledger.models.transaction import TokenTransaction
from tokenledger.models.wallet import OrganizationWallet
from tokenledger.services import wallet_service


async def wallet_row(db, org) -> OrganizationWallet:
    result = await db.execute(
        select(OrganizationWallet)
        .where(OrganizationWallet.organization_id == org.id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


class TestPurchase:
    async def test_first_purchase_creates_wallet(self, db, org, admin):
        result = await wallet_service.purchase(db, admin.id, org.id, 5000)

        assert result.purchased == 5000
        assert result.total_before == 0
        assert result.total_after == 5000
        wallet = await wallet_row(db, org)
        assert wallet.total_tokens == 5000
        assert wallet.tokens_purchased == 5000
        assert wallet.tokens_allocated == 0
        assert wallet.last_purchase_at is not None

    async def test_purchase_adds_to_existing_pool(self, db, org, admin):
        await create_wallet(db, org, total=1000, allocated=400)
        await db.commit()

        result = await wallet_service.purchase(db, admin.id, org.id, 250, metadata={"payment_ref": "pi_123"})

        assert result.total_after == 1250
        wallet = await wallet_row(db, org)
        assert wallet.available_tokens == 850

        txn = (
            await db.execute(select(TokenTransaction).where(TokenTransaction.id == result.transaction_id))
        ).scalar_one()
        assert txn.transaction_type == "purchase"
        assert txn.user_id is None
        assert txn.balance_before == 1000
        assert txn.balance_after == 1250
        assert txn.details == {"purchased_by": str(admin.id), "payment_ref": "pi_123"}

    async def test_member_cannot_purchase(self, db, org, member):
        with pytest.raises(InsufficientPrivilegeError):
            await wallet_service.purchase(db, member.id, org.id, 100)

    @pytest.mark.parametrize("amount", [0, -5])
    async def test_non_positive_amount_rejected(self, db, org, admin, amount):
        with pytest.raises(ValidationError):
            await wallet_service.purchase(db, admin.id, org.id, amount)

    async def test_no_expiry_by_default(self, db, org, admin):
        result = await wallet_service.purchase(db, admin.id, org.id, 100)
        assert result.tokens_expire_at is None

    async def test_expiry_window_applied(self, db, org, admin, monkeypatch):
        monkeypatch.setattr(settings, "TOKEN_EXPIRY_DAYS", 30)
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)

        result = await wallet_service.purchase(db, admin.id, org.id, 100, now=now)
        assert result.tokens_expire_at == now + timedelta(days=30)


class TestExpireWallets:
    async def test_expires_only_unallocated_remainder(self, db, org):
        now = datetime(2026, 4, 1, tzinfo=timezone.utc)
        await create_wallet(db, org, total=1000, allocated=300, tokens_expire_at=now - timedelta(hours=1))
        await db.commit()

        summary = await wallet_service.expire_wallets(db, now=now)

        assert summary == {"wallets": 1, "tokens": 700}
        wallet = await wallet_row(db, org)
        assert wallet.total_tokens == 300
        assert wallet.tokens_allocated == 300
        assert wallet.tokens_expire_at is None

        txns = (
            await db.execute(select(TokenTransaction).where(TokenTransaction.transaction_type == "expiration"))
        ).scalars().all()
        assert len(txns) == 1
        assert txns[0].amount == 700
        assert txns[0].balance_before == 1000
        assert txns[0].balance_after == 300

    async def test_future_expiry_untouched(self, db, org):
        now = datetime(2026, 4, 1, tzinfo=timezone.utc)
        await create_wallet(db, org, total=1000, tokens_expire_at=now + timedelta(days=1))
        await db.commit()

        summary = await wallet_service.expire_wallets(db, now=now)

        assert summary == {"wallets": 0, "tokens": 0}
        assert (await wallet_row(db, org)).total_tokens == 1000

    async def test_wallet_without_expiry_untouched(self, db, org):
        await create_wallet(db, org, total=1000)
        await db.commit()

        summary = await wallet_service.expire_wallets(db)
        assert summary["wallets"] == 0
