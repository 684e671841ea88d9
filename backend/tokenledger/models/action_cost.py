import uuid

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from tokenledger.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

ACTION_TYPES = (
    "message_text",
    "message_media",
    "ai_summary",
    "ai_smart_reply",
    "ai_moderation",
    "ai_analytics",
    "broadcast",
    "voice_note",
    "file_share",
)


class ActionCost(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Price and gating rules for a billable action.

    A row with ``organization_id IS NULL`` is the global default; a row with a
    concrete organization overrides it for that organization only.
    """

    __tablename__ = "token_action_costs"
    __table_args__ = (
        CheckConstraint("token_cost >= 0", name="cost_non_negative"),
        # One override per (org, action) and one global default per action.
        Index(
            "uq_token_action_costs_org_action",
            "organization_id",
            "action_type",
            unique=True,
            postgresql_where=text("organization_id IS NOT NULL"),
            sqlite_where=text("organization_id IS NOT NULL"),
        ),
        Index(
            "uq_token_action_costs_global_action",
            "action_type",
            unique=True,
            postgresql_where=text("organization_id IS NULL"),
            sqlite_where=text("organization_id IS NULL"),
        ),
    )

    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("organizations.id"), nullable=True, index=True
    )
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    token_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    admin_only: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
