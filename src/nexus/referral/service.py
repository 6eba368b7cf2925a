"""Referral application service.

Applying a code moves through Validating -> Eligible -> Crediting ->
Committed, or ends early as Rejected (format/lookup) or Aborted
(eligibility). The referred side commits as one database transaction whose
conditional update on ``referred_by`` decides concurrent races. The
referrer side is credited afterwards in its own transaction; if that fails
the referral stays applied and ``reconcile_referrer_credits`` repairs it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from tenacity import RetryCallState, RetryError, Retrying, retry_if_exception_type, stop_after_attempt

from nexus.accounts.exceptions import AccountConflictError, AccountNotFoundError
from nexus.accounts.models import Account
from nexus.accounts.service import AccountService
from nexus.ledger.exceptions import LedgerError
from nexus.ledger.models import TransactionType
from nexus.ledger.service import PointsLedger
from nexus.logging_config import get_logger
from nexus.referral.codes import is_valid_format
from nexus.referral.constants import (
    REASON_REFERRED_BONUS,
    REFERRED_POINTS,
    REFERRED_XP,
    REFERRER_POINTS,
    ReferralStatus,
    referral_source_key,
)
from nexus.referral.exceptions import (
    AlreadyReferredError,
    CodeNotFoundError,
    InvalidFormatError,
    ReferralAccountNotFoundError,
    ReferralError,
    ReferralErrorKind,
    ReferrerUnavailableError,
    SelfReferralError,
    TransientFailureError,
)
from nexus.referral.invitations import ReferralInvitationService
from nexus.referral.stats import ReferralStatsAggregator
from nexus.settings import settings
from nexus.storage.db import Database, db
from nexus.storage.models import utcnow
from nexus.storage.repo import AccountRepository

logger = get_logger(__name__)


class ApplicationState(str, Enum):
    """States of a single referral application attempt."""
    VALIDATING = "validating"
    ELIGIBLE = "eligible"
    CREDITING = "crediting"
    COMMITTED = "committed"
    REJECTED = "rejected"
    ABORTED = "aborted"


@dataclass
class ReferralApplicationResult:
    """Outcome shown to the user after submitting a code."""

    success: bool
    bonus_earned: int | None = None
    experience_earned: int | None = None
    referrer_name: str | None = None
    referral_code: str | None = None
    error_kind: ReferralErrorKind | None = None
    message: str | None = None
    referrer_credited: bool | None = None

    @classmethod
    def from_error(cls, error: ReferralError, referral_code: str | None = None) -> "ReferralApplicationResult":
        return cls(
            success=False,
            referral_code=referral_code,
            error_kind=error.kind,
            message=error.message,
        )

    @property
    def already_applied(self) -> bool:
        """Duplicate submissions are a neutral outcome, not an error."""
        return self.error_kind == ReferralErrorKind.ALREADY_REFERRED

    def to_dict(self) -> dict[str, Any]:
        """Client payload using the web client's camelCase keys."""
        payload = {
            "success": self.success,
            "bonusEarned": self.bonus_earned,
            "referrerName": self.referrer_name,
            "referralCode": self.referral_code,
            "errorKind": self.error_kind.value if self.error_kind else None,
            "message": self.message,
        }
        return {key: value for key, value in payload.items() if value is not None}


def get_referral_status(account: Account) -> ReferralStatus:
    """Activated once the account has redeemed a code, pending before."""
    return ReferralStatus.ACTIVATED if account.referred_by else ReferralStatus.PENDING


class ReferralService:
    """Service for validating and applying referral codes."""

    def __init__(
        self,
        database: Database | None = None,
        accounts: AccountService | None = None,
        ledger: PointsLedger | None = None,
        stats: ReferralStatsAggregator | None = None,
        invitations: ReferralInvitationService | None = None,
        max_attempts: int | None = None,
    ):
        self.database = database or db
        self.accounts = accounts or AccountService(self.database)
        self.ledger = ledger or PointsLedger(self.database)
        self.stats = stats or ReferralStatsAggregator(
            self.database, accounts=self.accounts, ledger=self.ledger
        )
        self.invitations = invitations or ReferralInvitationService(self.database)
        self.max_attempts = max_attempts or settings.referral_max_attempts
        self.logger = get_logger(__name__)

    def validate_code(self, code: str) -> Account | None:
        """Return the active account owning a well-formed code, if any."""
        if not is_valid_format(code):
            return None
        referrer = self.accounts.get_account_by_referral_code(code)
        if referrer is None or not referrer.is_active:
            return None
        return referrer

    def apply_referral_code(self, applying_account_id: str, code: str) -> ReferralApplicationResult:
        """Redeem a referral code for an account.

        Args:
            applying_account_id: Account redeeming the code
            code: Referral code of the referrer

        Returns:
            Successful result with the bonus earned

        Raises:
            InvalidFormatError: Code is not 8 uppercase letters/digits (no lookups made)
            CodeNotFoundError: No active account owns the code
            ReferralAccountNotFoundError: Applying account does not exist
            SelfReferralError: Code belongs to the applying account
            AlreadyReferredError: Applying account already redeemed a code
            TransientFailureError: Storage timed out or conflicts persisted
        """
        if not is_valid_format(code):
            self.logger.info(
                "referral_rejected",
                state=ApplicationState.REJECTED.value,
                account_id=applying_account_id,
                error_kind=ReferralErrorKind.INVALID_FORMAT.value,
            )
            raise InvalidFormatError()

        def log_conflict(retry_state: RetryCallState) -> None:
            self.logger.info(
                "referral_attempt_conflict",
                account_id=applying_account_id,
                code=code,
                attempt=retry_state.attempt_number,
            )

        # A conflict means the account changed after it was read; re-read and retry
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            retry=retry_if_exception_type(AccountConflictError),
            before_sleep=log_conflict,
        )
        try:
            applying, referrer = retrying(self._commit_referred_side, applying_account_id, code)
        except RetryError:
            self.logger.warning(
                "referral_attempts_exhausted",
                account_id=applying_account_id,
                code=code,
                attempts=self.max_attempts,
            )
            raise TransientFailureError()
        except (OperationalError, PoolTimeoutError) as e:
            self.logger.warning(
                "referral_storage_unavailable",
                account_id=applying_account_id,
                code=code,
                error=str(e),
            )
            raise TransientFailureError() from e
        except ReferralError as e:
            self.logger.info(
                "referral_rejected",
                state=(
                    ApplicationState.REJECTED.value
                    if isinstance(e, CodeNotFoundError)
                    else ApplicationState.ABORTED.value
                ),
                account_id=applying_account_id,
                code=code,
                error_kind=e.kind.value,
            )
            raise

        referrer_credited = self._credit_referrer(referrer.id, applying.id, code)
        self._activate_invitations(code, applying.id)

        self.logger.info(
            "referral_applied",
            state=ApplicationState.COMMITTED.value,
            account_id=applying.id,
            referrer_id=referrer.id,
            code=code,
            referrer_credited=referrer_credited,
        )
        friend = referrer.display_name or "your friend"
        return ReferralApplicationResult(
            success=True,
            bonus_earned=REFERRED_POINTS,
            experience_earned=REFERRED_XP,
            referrer_name=referrer.display_name,
            referral_code=code,
            message=f"Referral applied! You won {REFERRED_POINTS} pts thanks to {friend}.",
            referrer_credited=referrer_credited,
        )

    def submit_referral_code(self, applying_account_id: str, code: str) -> ReferralApplicationResult:
        """Like apply_referral_code but reports referral failures in the result."""
        try:
            return self.apply_referral_code(applying_account_id, code)
        except ReferralError as e:
            return ReferralApplicationResult.from_error(e, referral_code=code)

    def _commit_referred_side(self, applying_account_id: str, code: str) -> tuple[Account, Account]:
        """Validate, check eligibility and credit the applying account.

        Raises:
            AccountConflictError: The applying account changed after it was read
        """
        with self.database.session() as session:
            accounts = AccountRepository(session)

            # Validating
            referrer = accounts.get_by_referral_code(code)
            if referrer is None or not referrer.is_active:
                raise CodeNotFoundError()

            # Eligibility
            applying = accounts.get_by_id(applying_account_id)
            if applying is None:
                raise ReferralAccountNotFoundError()
            if applying.id == referrer.id:
                raise SelfReferralError()
            if applying.referred_by is not None:
                raise AlreadyReferredError()

            # Crediting: the linkage write is the authority on who wins a race
            linked = accounts.link_referrer(
                applying.id,
                referrer_key=referrer.wallet_address,
                referred_at=utcnow(),
                expected_version=applying.version,
                points=REFERRED_POINTS,
                experience=REFERRED_XP,
            )
            if not linked:
                current = accounts.get_by_id(applying.id)
                if current is None:
                    raise ReferralAccountNotFoundError()
                if current.referred_by is not None:
                    raise AlreadyReferredError()
                raise AccountConflictError(applying.id, applying.version)

            self.ledger.append_transaction(
                session,
                user_id=applying.id,
                transaction_type=TransactionType.BONUS,
                amount=REFERRED_POINTS,
                reason=REASON_REFERRED_BONUS,
                experience=REFERRED_XP,
                metadata={
                    "referrer_account_id": referrer.id,
                    "referral_code": code,
                },
                source_key=referral_source_key(applying.id),
                apply_to_account=False,
            )
            applying = accounts.get_by_id(applying.id)

        return applying, referrer

    def _credit_referrer(self, referrer_id: str, referred_account_id: str, code: str) -> bool:
        """Best-effort referrer credit; failures are left for reconciliation."""
        try:
            self.stats.record_referral(referrer_id, referred_account_id, code)
            return True
        except ReferrerUnavailableError:
            self.logger.warning(
                "referral_referrer_credit_failed",
                referrer_id=referrer_id,
                referred_account_id=referred_account_id,
                error_kind=ReferralErrorKind.REFERRER_UNAVAILABLE.value,
            )
        except (SQLAlchemyError, LedgerError):
            self.logger.exception(
                "referral_referrer_credit_failed",
                referrer_id=referrer_id,
                referred_account_id=referred_account_id,
            )
        return False

    def _activate_invitations(self, code: str, referred_account_id: str) -> None:
        try:
            self.invitations.activate_invitations(code, referred_account_id, REFERRER_POINTS)
        except SQLAlchemyError:
            self.logger.exception(
                "referral_invitation_activation_failed",
                code=code,
                referred_account_id=referred_account_id,
            )

    def get_referral_summary(self, account_id: str) -> dict[str, Any]:
        """Referral overview for an account.

        Raises:
            AccountNotFoundError: If the account does not exist
        """
        account = self.accounts.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)

        return {
            "code": account.referral_code,
            "link": f"{settings.public_base_url.rstrip('/')}/?ref={account.referral_code}",
            "status": get_referral_status(account).value,
            "referred_by": account.referred_by,
            "referred_at": account.referred_at.isoformat() if account.referred_at else None,
            "referrals_count": account.referrals_count,
            "total_referral_points": account.total_referral_points,
        }


# Singleton instance
referral_service = ReferralService()
