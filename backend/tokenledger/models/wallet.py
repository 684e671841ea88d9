from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Integer, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tokenledger.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from tokenledger.models.organization import Organization


class OrganizationWallet(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Top-level token pool owned by an organization.

    ``tokens_allocated`` counts tokens granted out to member allocations
    (grants minus revocations), so ``total_tokens - tokens_allocated`` is what
    an admin can still hand out. ``tokens_consumed`` accumulates the cost of
    every metered action across the organization.
    """

    __tablename__ = "organization_wallets"
    __table_args__ = (
        CheckConstraint("tokens_allocated >= 0", name="allocated_non_negative"),
        CheckConstraint("tokens_allocated <= total_tokens", name="allocated_within_total"),
    )

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id"), unique=True, nullable=False, index=True
    )

    total_tokens: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    tokens_purchased: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    tokens_allocated: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    tokens_consumed: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    last_purchase_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    tokens_expire_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    organization: Mapped["Organization"] = relationship("Organization", back_populates="wallet")

    @property
    def available_tokens(self) -> int:
        return self.total_tokens - self.tokens_allocated


class UserTokenAllocation(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A member's slice of the organization pool with its live balance."""

    __tablename__ = "user_token_allocations"
    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_user_token_allocations_user_org"),
        CheckConstraint("current_balance >= 0", name="balance_non_negative"),
        CheckConstraint("quota_reset_day BETWEEN 1 AND 28", name="reset_day_range"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id"), nullable=False, index=True
    )

    monthly_quota: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_reset_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    quota_reset_day: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    allocated_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)

