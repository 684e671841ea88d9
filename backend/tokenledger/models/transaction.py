import uuid

from sqlalchemy import JSON, BigInteger, CheckConstraint, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from tokenledger.models.base import Base, CreatedAtMixin, UUIDPrimaryKeyMixin

TRANSACTION_TYPES = (
    "purchase",
    "allocation",
    "revocation",
    "consumption",
    "expiration",
    "monthly_reset",
    "refund",
)

# Sign applied to ``amount`` when replaying a user's balance history.
_USER_BALANCE_SIGN = {
    "allocation": 1,
    "refund": 1,
    "consumption": -1,
    "revocation": -1,
}


class TokenTransaction(Base, UUIDPrimaryKeyMixin, CreatedAtMixin):
    """Append-only ledger row. Inserted once, never updated or deleted."""

    __tablename__ = "token_transactions"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="amount_non_negative"),
        CheckConstraint(
            "transaction_type IN (" + ", ".join(f"'{t}'" for t in TRANSACTION_TYPES) + ")",
            name="type_valid",
        ),
        Index("ix_token_transactions_org_created", "organization_id", "created_at"),
    )

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True, index=True)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_before: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    balance_after: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    action_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    refund_of_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("token_transactions.id"), unique=True, nullable=True
    )

    @property
    def signed_amount(self) -> int:
        """Effect of this row on the user's ``current_balance``."""
        if self.transaction_type == "monthly_reset":
            return (self.balance_after or 0) - (self.balance_before or 0)
        return _USER_BALANCE_SIGN.get(self.transaction_type, 0) * self.amount
