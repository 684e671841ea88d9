from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tokenledger.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from tokenledger.models.user import User
    from tokenledger.models.wallet import OrganizationWallet


class Organization(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    invite_code: Mapped[str | None] = mapped_column(String(32), unique=True, nullable=True)

    wallet: Mapped["OrganizationWallet"] = relationship(
        "OrganizationWallet", back_populates="organization", uselist=False
    )
    users: Mapped[list["User"]] = relationship("User", back_populates="organization")
