"""Repository layer for data access.

Repositories are bound to a session and never commit; the caller owns
the transaction.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import and_, case, exists, func, select, update
from sqlalchemy.orm import Session, aliased

from nexus.accounts.models import EXPERIENCE_PER_LEVEL, Account
from nexus.ledger.models import PointsTransaction, TransactionType
from nexus.referral.constants import REASON_REFERRED_BONUS, REASON_REFERRER_BONUS, ReferralStatus
from nexus.referral.models import ReferralInvitation
from nexus.storage.models import utcnow


class AccountRepository:
    """Repository for Account entities."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, account_id: str) -> Account | None:
        """Get account by ID."""
        return self.session.get(Account, account_id, populate_existing=True)

    def get_by_wallet(self, wallet_address: str) -> Account | None:
        """Get account by wallet address."""
        return self.session.scalar(
            select(Account).where(Account.wallet_address == wallet_address)
        )

    def get_by_referral_code(self, code: str) -> Account | None:
        """Get account owning a referral code."""
        return self.session.scalar(
            select(Account).where(Account.referral_code == code)
        )

    def code_exists(self, code: str) -> bool:
        return self.session.scalar(
            select(exists().where(Account.referral_code == code))
        )

    def add(self, account: Account) -> Account:
        self.session.add(account)
        self.session.flush()
        return account

    def update_fields(
        self,
        account_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> int:
        """Write fields, bumping the version.

        Returns:
            Number of rows updated (0 when missing or version mismatch)
        """
        stmt = update(Account).where(Account.id == account_id)
        if expected_version is not None:
            stmt = stmt.where(Account.version == expected_version)
        stmt = stmt.values(
            **fields,
            version=Account.version + 1,
            updated_at=utcnow(),
        ).execution_options(synchronize_session=False)
        return self.session.execute(stmt).rowcount

    def link_referrer(
        self,
        account_id: str,
        referrer_key: str,
        referred_at: datetime,
        expected_version: int,
        points: int,
        experience: int,
    ) -> int:
        """Compare-and-set the referrer linkage and credit the bonus.

        Only matches while referred_by is still unset and the account has not
        changed since it was read.

        Returns:
            Number of rows updated (1 on success)
        """
        stmt = (
            update(Account)
            .where(
                Account.id == account_id,
                Account.referred_by.is_(None),
                Account.version == expected_version,
            )
            .values(
                referred_by=referrer_key,
                referred_at=referred_at,
                total_points=Account.total_points + points,
                experience=Account.experience + experience,
                level=(Account.experience + experience) // EXPERIENCE_PER_LEVEL + 1,
                version=Account.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount

    def apply_points(self, account_id: str, points_delta: int, experience_delta: int = 0) -> int:
        """Atomically add (or subtract) points and experience, recomputing level.

        A deduction only matches while the balance covers it.

        Returns:
            Number of rows updated (0 when missing or the balance is too low)
        """
        stmt = update(Account).where(Account.id == account_id)
        if points_delta < 0:
            stmt = stmt.where(Account.total_points >= -points_delta)
        stmt = (
            stmt
            .values(
                total_points=Account.total_points + points_delta,
                experience=Account.experience + experience_delta,
                level=(Account.experience + experience_delta) // EXPERIENCE_PER_LEVEL + 1,
                version=Account.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount

    def increment_referral_stats(self, account_id: str, points: int) -> int:
        """Count one more successful referral for a referrer."""
        stmt = (
            update(Account)
            .where(Account.id == account_id)
            .values(
                referrals_count=Account.referrals_count + 1,
                total_referral_points=Account.total_referral_points + points,
                version=Account.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount

    def list_referred_by(self, referrer_key: str) -> list[Account]:
        """Accounts linked to the given referrer key, newest first."""
        return list(self.session.scalars(
            select(Account)
            .where(Account.referred_by == referrer_key)
            .order_by(Account.referred_at.desc())
        ))


class PointsTransactionRepository:
    """Repository for PointsTransaction entities (append-only)."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, transaction: PointsTransaction) -> PointsTransaction:
        self.session.add(transaction)
        self.session.flush()
        return transaction

    def get_by_source(self, reason: str, source_key: str) -> PointsTransaction | None:
        return self.session.scalar(
            select(PointsTransaction).where(
                PointsTransaction.reason == reason,
                PointsTransaction.source_key == source_key,
            )
        )

    def sum_for_user(self, user_id: str) -> int:
        """Signed sum of all amounts for a user."""
        signed = case(
            (
                PointsTransaction.type.in_([TransactionType.SPEND, TransactionType.PENALTY]),
                -PointsTransaction.amount,
            ),
            else_=PointsTransaction.amount,
        )
        total = self.session.scalar(
            select(func.coalesce(func.sum(signed), 0)).where(
                PointsTransaction.user_id == user_id
            )
        )
        return int(total or 0)

    def list_for_user(self, user_id: str, limit: int = 50, offset: int = 0) -> list[PointsTransaction]:
        """List a user's transactions, newest first."""
        return list(self.session.scalars(
            select(PointsTransaction)
            .where(PointsTransaction.user_id == user_id)
            .order_by(PointsTransaction.timestamp.desc())
            .offset(offset)
            .limit(limit)
        ))

    def reason_totals(self, user_id: str, reason: str) -> tuple[int, int]:
        """(count, amount sum) of a user's entries with the given reason."""
        row = self.session.execute(
            select(
                func.count(PointsTransaction.id),
                func.coalesce(func.sum(PointsTransaction.amount), 0),
            ).where(
                PointsTransaction.user_id == user_id,
                PointsTransaction.reason == reason,
            )
        ).one()
        return int(row[0]), int(row[1])

    def referred_bonuses_missing_referrer_entry(self) -> list[PointsTransaction]:
        """Referred-side bonuses whose referrer-side entry was never written."""
        referrer_entry = aliased(PointsTransaction)
        missing = ~exists().where(
            and_(
                referrer_entry.reason == REASON_REFERRER_BONUS,
                referrer_entry.source_key == PointsTransaction.source_key,
            )
        )
        return list(self.session.scalars(
            select(PointsTransaction)
            .where(PointsTransaction.reason == REASON_REFERRED_BONUS, missing)
            .order_by(PointsTransaction.timestamp)
        ))


class ReferralInvitationRepository:
    """Repository for ReferralInvitation entities."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, invitation: ReferralInvitation) -> ReferralInvitation:
        self.session.add(invitation)
        self.session.flush()
        return invitation

    def list_pending_for_code(self, referral_code: str) -> list[ReferralInvitation]:
        return list(self.session.scalars(
            select(ReferralInvitation).where(
                ReferralInvitation.referral_code == referral_code,
                ReferralInvitation.status == ReferralStatus.PENDING,
            )
        ))

    def list_for_referrer(
        self,
        referrer_account_id: str,
        status: ReferralStatus | None = None,
    ) -> list[ReferralInvitation]:
        stmt = select(ReferralInvitation).where(
            ReferralInvitation.referrer_account_id == referrer_account_id
        )
        if status is not None:
            stmt = stmt.where(ReferralInvitation.status == status)
        stmt = stmt.order_by(
            ReferralInvitation.activated_at.desc(),
            ReferralInvitation.invited_at.desc(),
        )
        return list(self.session.scalars(stmt))
