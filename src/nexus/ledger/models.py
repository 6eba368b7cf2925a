"""Points ledger database models."""

import json
import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import CheckConstraint, DateTime, Enum as SQLEnum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from nexus.storage.db import Base
from nexus.storage.models import utcnow


class TransactionType(str, Enum):
    """Kind of ledger entry; the sign of the amount follows from it."""
    EARN = "earn"
    SPEND = "spend"
    BONUS = "bonus"
    PENALTY = "penalty"

    @property
    def sign(self) -> int:
        return -1 if self in (TransactionType.SPEND, TransactionType.PENALTY) else 1


class PointsTransaction(Base):
    """Immutable record of a single point/XP grant or deduction."""

    __tablename__ = "points_transactions"
    __table_args__ = (
        # A given grant (reason + source) can only ever be recorded once
        UniqueConstraint("reason", "source_key", name="uq_points_transactions_reason_source"),
        CheckConstraint("amount > 0", name="ck_points_transactions_amount_positive"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: uuid.uuid4().hex)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)

    type: Mapped[TransactionType] = mapped_column(
        SQLEnum(TransactionType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # Always positive
    experience: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reason: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Reference
    demo_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    source_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<PointsTransaction(id={self.id}, user={self.user_id}, {self.type.value} {self.amount})>"

    @property
    def signed_amount(self) -> int:
        return self.type.sign * self.amount

    @property
    def metadata_dict(self) -> dict[str, Any]:
        """Get parsed metadata."""
        if self.metadata_json:
            return json.loads(self.metadata_json)
        return {}
