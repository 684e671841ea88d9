"""Token ledger schema and global action costs

Revision ID: 001_token_ledger
Revises:
Create Date: 2026-10-17
"""

import uuid

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSON, UUID

from alembic import op

revision = "001_token_ledger"
down_revision = None
branch_labels = None
depends_on = None

# Global default prices; organizations override per action
DEFAULT_ACTION_COSTS = {
    "message_text": 1,
    "message_media": 2,
    "ai_summary": 15,
    "ai_smart_reply": 5,
    "ai_moderation": 5,
    "ai_analytics": 20,
    "broadcast": 1,
    "voice_note": 2,
    "file_share": 2,
}


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # ---- Organizations + members ----
    op.create_table(
        "organizations",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, default=uuid.uuid4),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("invite_code", sa.String(32), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("invite_code", name="uq_organizations_invite_code"),
    )

    op.create_table(
        "users",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, default=uuid.uuid4),
        sa.Column("organization_id", UUID(as_uuid=True), sa.ForeignKey("organizations.id"), nullable=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_organization_id", "users", ["organization_id"])

    op.create_table(
        "user_roles",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, default=uuid.uuid4),
        sa.Column("organization_id", UUID(as_uuid=True), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("role", sa.String(20), server_default="user", nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "organization_id", name="uq_user_roles_user_org"),
    )
    op.create_index("ix_user_roles_organization_id", "user_roles", ["organization_id"])
    op.create_index("ix_user_roles_user_id", "user_roles", ["user_id"])

    # ---- Wallets + allocations ----
    op.create_table(
        "organization_wallets",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, default=uuid.uuid4),
        sa.Column("organization_id", UUID(as_uuid=True), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("total_tokens", sa.BigInteger, server_default="0", nullable=False),
        sa.Column("tokens_purchased", sa.BigInteger, server_default="0", nullable=False),
        sa.Column("tokens_allocated", sa.BigInteger, server_default="0", nullable=False),
        sa.Column("tokens_consumed", sa.BigInteger, server_default="0", nullable=False),
        sa.Column("last_purchase_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("tokens_expire_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("organization_id", name="uq_organization_wallets_organization_id"),
        sa.CheckConstraint("tokens_allocated >= 0", name="ck_organization_wallets_allocated_non_negative"),
        sa.CheckConstraint(
            "tokens_allocated <= total_tokens", name="ck_organization_wallets_allocated_within_total"
        ),
    )
    op.create_index("ix_organization_wallets_organization_id", "organization_wallets", ["organization_id"])
    op.create_index("ix_organization_wallets_tokens_expire_at", "organization_wallets", ["tokens_expire_at"])

    op.create_table(
        "user_token_allocations",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, default=uuid.uuid4),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("organization_id", UUID(as_uuid=True), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("monthly_quota", sa.Integer, server_default="0", nullable=False),
        sa.Column("current_balance", sa.Integer, server_default="0", nullable=False),
        sa.Column("last_reset_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("quota_reset_day", sa.Integer, server_default="1", nullable=False),
        sa.Column("allocated_by", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "organization_id", name="uq_user_token_allocations_user_org"),
        sa.CheckConstraint("current_balance >= 0", name="ck_user_token_allocations_balance_non_negative"),
        sa.CheckConstraint(
            "quota_reset_day BETWEEN 1 AND 28", name="ck_user_token_allocations_reset_day_range"
        ),
    )
    op.create_index("ix_user_token_allocations_user_id", "user_token_allocations", ["user_id"])
    op.create_index("ix_user_token_allocations_organization_id", "user_token_allocations", ["organization_id"])

    # ---- Action costs ----
    action_costs = op.create_table(
        "token_action_costs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, default=uuid.uuid4),
        sa.Column("organization_id", UUID(as_uuid=True), sa.ForeignKey("organizations.id"), nullable=True),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("token_cost", sa.Integer, nullable=False),
        sa.Column("is_enabled", sa.Boolean, server_default="true", nullable=False),
        sa.Column("admin_only", sa.Boolean, server_default="false", nullable=False),
        *_timestamps(),
        sa.CheckConstraint("token_cost >= 0", name="ck_token_action_costs_cost_non_negative"),
    )
    op.create_index("ix_token_action_costs_organization_id", "token_action_costs", ["organization_id"])
    op.create_index(
        "uq_token_action_costs_org_action",
        "token_action_costs",
        ["organization_id", "action_type"],
        unique=True,
        postgresql_where=sa.text("organization_id IS NOT NULL"),
    )
    op.create_index(
        "uq_token_action_costs_global_action",
        "token_action_costs",
        ["action_type"],
        unique=True,
        postgresql_where=sa.text("organization_id IS NULL"),
    )

    # ---- Ledger ----
    op.create_table(
        "token_transactions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, default=uuid.uuid4),
        sa.Column("organization_id", UUID(as_uuid=True), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("transaction_type", sa.String(20), nullable=False),
        sa.Column("amount", sa.BigInteger, nullable=False),
        sa.Column("balance_before", sa.BigInteger, nullable=True),
        sa.Column("balance_after", sa.BigInteger, nullable=True),
        sa.Column("action_type", sa.String(50), nullable=True),
        sa.Column("metadata", JSON, nullable=True),
        sa.Column("refund_of_id", UUID(as_uuid=True), sa.ForeignKey("token_transactions.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("refund_of_id", name="uq_token_transactions_refund_of_id"),
        sa.CheckConstraint("amount >= 0", name="ck_token_transactions_amount_non_negative"),
        sa.CheckConstraint(
            "transaction_type IN ('purchase', 'allocation', 'revocation', 'consumption', "
            "'expiration', 'monthly_reset', 'refund')",
            name="ck_token_transactions_type_valid",
        ),
    )
    op.create_index("ix_token_transactions_organization_id", "token_transactions", ["organization_id"])
    op.create_index("ix_token_transactions_user_id", "token_transactions", ["user_id"])
    op.create_index("ix_token_transactions_transaction_type", "token_transactions", ["transaction_type"])
    op.create_index(
        "ix_token_transactions_org_created", "token_transactions", ["organization_id", "created_at"]
    )

    # The ledger is append-only
    op.execute(
        """
        CREATE OR REPLACE FUNCTION token_transactions_immutable() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'token_transactions is append-only';
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        """
        CREATE TRIGGER token_transactions_no_mutation
        BEFORE UPDATE OR DELETE ON token_transactions
        FOR EACH ROW EXECUTE FUNCTION token_transactions_immutable()
        """
    )

    op.bulk_insert(
        action_costs,
        [
            {
                "id": uuid.uuid4(),
                "organization_id": None,
                "action_type": action_type,
                "token_cost": cost,
                "is_enabled": True,
                "admin_only": False,
            }
            for action_type, cost in DEFAULT_ACTION_COSTS.items()
        ],
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS token_transactions_no_mutation ON token_transactions")
    op.execute("DROP FUNCTION IF EXISTS token_transactions_immutable()")
    op.drop_table("token_transactions")
    op.drop_table("token_action_costs")
    op.drop_table("user_token_allocations")
    op.drop_table("organization_wallets")
    op.drop_table("user_roles")
    op.drop_table("users")
    op.drop_table("organizations")
