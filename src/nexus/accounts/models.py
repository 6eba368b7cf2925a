"""Account database models."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from nexus.storage.db import Base
from nexus.storage.models import utcnow

EXPERIENCE_PER_LEVEL = 1000


def level_for_experience(experience: int) -> int:
    """Level reached with the given experience (level 1 starts at 0 XP)."""
    return max(experience, 0) // EXPERIENCE_PER_LEVEL + 1


def _new_account_id() -> str:
    return uuid.uuid4().hex


class Account(Base):
    """One account per wallet identity.

    Holds progression (level, experience, points), the account's own
    referral code and, once a code has been redeemed, the referrer linkage.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint(
            "(referred_by IS NULL) = (referred_at IS NULL)",
            name="ck_accounts_referral_linkage",
        ),
        CheckConstraint("total_points >= 0", name="ck_accounts_total_points_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_account_id)

    # Identity
    wallet_address: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    public_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    network: Mapped[str] = mapped_column(String(20), nullable=False, default="TESTNET")
    display_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Progression
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    experience: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Referral (referral_code is immutable once issued)
    referral_code: Mapped[str] = mapped_column(String(8), unique=True, nullable=False, index=True)
    referred_by: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    referred_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Referrer-side statistics, derivable from the ledger
    referrals_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_referral_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Optimistic concurrency: bumped by every write
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, wallet={self.wallet_address}, code={self.referral_code})>"

    @property
    def name(self) -> str:
        """Name shown to other users."""
        return self.display_name or "Anonymous User"
