"""Referrer-side credit and referral statistics.

``referrals_count`` and ``total_referral_points`` on an account are a cache
of its ``referral_referrer_bonus`` ledger entries. They are incremented when
a referrer is credited and can always be recomputed from the ledger.
"""

from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt

from nexus.accounts.exceptions import AccountConflictError, AccountNotFoundError
from nexus.accounts.service import AccountService
from nexus.ledger.exceptions import DuplicateTransactionError, LedgerError
from nexus.ledger.models import TransactionType
from nexus.ledger.service import PointsLedger
from nexus.logging_config import get_logger
from nexus.referral.constants import (
    REASON_REFERRER_BONUS,
    REFERRER_POINTS,
    REFERRER_XP,
    referral_source_key,
)
from nexus.referral.exceptions import ReferrerUnavailableError, TransientFailureError
from nexus.settings import settings
from nexus.storage.db import Database, db
from nexus.storage.repo import AccountRepository, PointsTransactionRepository

logger = get_logger(__name__)


@dataclass
class ReferralStats:
    """Referrer counters."""

    account_id: str
    referrals_count: int
    total_referral_points: int


@dataclass
class ReconciliationReport:
    """Outcome of a referrer-credit reconciliation run.

    Both lists hold the IDs of referred accounts.
    """

    repaired: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)

    @property
    def scanned(self) -> int:
        return len(self.repaired) + len(self.pending)


class ReferralStatsAggregator:
    """Credits referrers and keeps their referral counters in line with the ledger."""

    def __init__(
        self,
        database: Database | None = None,
        accounts: AccountService | None = None,
        ledger: PointsLedger | None = None,
        max_attempts: int | None = None,
    ):
        self.database = database or db
        self.accounts = accounts or AccountService(self.database)
        self.ledger = ledger or PointsLedger(self.database)
        self.max_attempts = max_attempts or settings.referral_max_attempts
        self.logger = get_logger(__name__)

    def record_referral(
        self,
        referrer_id: str,
        referred_account_id: str,
        referral_code: str | None = None,
    ) -> bool:
        """Credit the referrer for one referred account.

        Appends the referrer bonus entry and bumps the counters in one
        database transaction. Safe to call repeatedly for the same referral.

        Returns:
            True if credited now, False if the credit was already recorded

        Raises:
            ReferrerUnavailableError: If the referrer is missing or deactivated
        """
        source_key = referral_source_key(referred_account_id)
        try:
            with self.database.session() as session:
                referrer = AccountRepository(session).get_by_id(referrer_id)
                if referrer is None or not referrer.is_active:
                    raise ReferrerUnavailableError()

                if PointsTransactionRepository(session).get_by_source(REASON_REFERRER_BONUS, source_key):
                    return False

                self.ledger.append_transaction(
                    session,
                    user_id=referrer_id,
                    transaction_type=TransactionType.BONUS,
                    amount=REFERRER_POINTS,
                    reason=REASON_REFERRER_BONUS,
                    experience=REFERRER_XP,
                    metadata={
                        "referred_account_id": referred_account_id,
                        "referral_code": referral_code,
                    },
                    source_key=source_key,
                )
                AccountRepository(session).increment_referral_stats(referrer_id, REFERRER_POINTS)
        except DuplicateTransactionError:
            # A concurrent reconciliation got there first
            return False

        self.logger.info(
            "referral_referrer_credited",
            referrer_id=referrer_id,
            referred_account_id=referred_account_id,
            points=REFERRER_POINTS,
            experience=REFERRER_XP,
        )
        return True

    def get_stats(self, account_id: str) -> ReferralStats:
        """Cached counters of an account."""
        account = self.accounts.require_account(account_id)
        return ReferralStats(
            account_id=account.id,
            referrals_count=account.referrals_count,
            total_referral_points=account.total_referral_points,
        )

    def recompute_referral_stats(self, account_id: str) -> ReferralStats:
        """Recalculate the referral counters from the ledger and overwrite them.

        Raises:
            AccountNotFoundError: If the account does not exist
            TransientFailureError: If the account kept changing underneath
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            retry=retry_if_exception_type(AccountConflictError),
            before_sleep=lambda retry_state: self.logger.info(
                "referral_stats_conflict",
                account_id=account_id,
                attempt=retry_state.attempt_number,
            ),
        )
        try:
            return retrying(self._write_referral_stats, account_id)
        except RetryError:
            raise TransientFailureError(f"Referral stats for {account_id} kept changing, try again later.")

    def _write_referral_stats(self, account_id: str) -> ReferralStats:
        with self.database.session() as session:
            account = AccountRepository(session).get_by_id(account_id)
            if account is None:
                raise AccountNotFoundError(account_id)
            count, total = PointsTransactionRepository(session).reason_totals(
                account_id, REASON_REFERRER_BONUS
            )

        stats = ReferralStats(
            account_id=account_id,
            referrals_count=count,
            total_referral_points=total,
        )
        if (account.referrals_count, account.total_referral_points) == (count, total):
            return stats

        self.accounts.update_account(
            account_id,
            {"referrals_count": count, "total_referral_points": total},
            expected_version=account.version,
        )
        self.logger.info(
            "referral_stats_recomputed",
            account_id=account_id,
            previous_count=account.referrals_count,
            previous_points=account.total_referral_points,
            referrals_count=count,
            total_referral_points=total,
        )
        return stats

    def reconcile_referrer_credits(self) -> ReconciliationReport:
        """Apply referrer credits that failed after the referred side committed."""
        with self.database.session() as session:
            missing = [
                (tx.user_id, tx.metadata_dict)
                for tx in PointsTransactionRepository(session).referred_bonuses_missing_referrer_entry()
            ]

        report = ReconciliationReport()
        for referred_account_id, metadata in missing:
            referrer_id = metadata.get("referrer_account_id")
            if not referrer_id:
                self.logger.error("referral_entry_without_referrer", referred_account_id=referred_account_id)
                report.pending.append(referred_account_id)
                continue
            try:
                self.record_referral(referrer_id, referred_account_id, metadata.get("referral_code"))
                report.repaired.append(referred_account_id)
            except ReferrerUnavailableError:
                self.logger.warning(
                    "referral_referrer_still_unavailable",
                    referrer_id=referrer_id,
                    referred_account_id=referred_account_id,
                )
                report.pending.append(referred_account_id)
            except (SQLAlchemyError, LedgerError):
                self.logger.exception(
                    "referral_reconcile_failed",
                    referrer_id=referrer_id,
                    referred_account_id=referred_account_id,
                )
                report.pending.append(referred_account_id)

        self.logger.info(
            "referral_reconciliation_finished",
            scanned=report.scanned,
            repaired=len(report.repaired),
            pending=len(report.pending),
        )
        return report
