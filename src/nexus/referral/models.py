"""Referral invitation database models."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum as SQLEnum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from nexus.referral.constants import ReferralStatus
from nexus.storage.db import Base
from nexus.storage.models import utcnow


class ReferralInvitation(Base):
    """Email invitation sent by a referrer.

    Starts pending and is activated once someone redeems the referrer's code.
    """

    __tablename__ = "referral_invitations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: uuid.uuid4().hex)
    referrer_account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id"), nullable=False, index=True
    )
    referral_code: Mapped[str] = mapped_column(String(8), nullable=False, index=True)
    invited_email: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[ReferralStatus] = mapped_column(
        SQLEnum(ReferralStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ReferralStatus.PENDING,
    )
    invited_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    activated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    referred_account_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<ReferralInvitation(code={self.referral_code}, email={self.invited_email}, status={self.status.value})>"
