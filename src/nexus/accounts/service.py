"""Account store: the authoritative record of identity, progress and referral linkage."""

from typing import Any

from sqlalchemy.exc import IntegrityError

from nexus.accounts.exceptions import AccountConflictError, AccountNotFoundError, DuplicateWalletError
from nexus.accounts.legacy import from_legacy_document
from nexus.accounts.models import Account, level_for_experience
from nexus.ledger.models import PointsTransaction, TransactionType
from nexus.logging_config import get_logger
from nexus.referral.codes import generate_code
from nexus.storage.db import Database, db
from nexus.storage.models import utcnow
from nexus.storage.repo import AccountRepository, PointsTransactionRepository

logger = get_logger(__name__)

MAX_CODE_ATTEMPTS = 10
LEGACY_BALANCE_REASON = "legacy_import_balance"

# Fields only the referral and ledger flows may write
IMMUTABLE_FIELDS = frozenset({
    "id",
    "wallet_address",
    "referral_code",
    "referred_by",
    "referred_at",
    "version",
    "created_at",
})


class AccountService:
    """Service for reading and writing accounts."""

    def __init__(self, database: Database | None = None):
        self.database = database or db
        self.logger = get_logger(__name__)

    def _unique_code(self, accounts: AccountRepository) -> str:
        """Generate a referral code not yet used by any account."""
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_code()
            if not accounts.code_exists(code):
                return code
        raise RuntimeError("Could not generate a unique referral code")

    def create_account(
        self,
        wallet_address: str,
        network: str = "TESTNET",
        public_key: str | None = None,
        display_name: str | None = None,
        pending_referral_code: str | None = None,
    ) -> Account:
        """Create an account with a freshly issued referral code.

        Args:
            wallet_address: Wallet address (unique)
            network: Wallet network, stored upper-cased
            public_key: Optional wallet public key
            display_name: Optional public name
            pending_referral_code: Code captured before the wallet connected;
                applied after creation, failures are logged and ignored

        Returns:
            Created account

        Raises:
            DuplicateWalletError: If the wallet already has an account
        """
        account = None
        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            try:
                with self.database.session() as session:
                    accounts = AccountRepository(session)
                    if accounts.get_by_wallet(wallet_address):
                        raise DuplicateWalletError(wallet_address)

                    now = utcnow()
                    account = accounts.add(Account(
                        wallet_address=wallet_address,
                        network=network.upper(),
                        public_key=public_key,
                        display_name=display_name,
                        referral_code=self._unique_code(accounts),
                        created_at=now,
                        updated_at=now,
                        last_login_at=now,
                    ))
                break
            except IntegrityError:
                # Lost a race on either the wallet or the code
                if self.get_account_by_wallet(wallet_address):
                    raise DuplicateWalletError(wallet_address)
                self.logger.warning("referral_code_collision", attempt=attempt)
        else:
            raise RuntimeError("Could not generate a unique referral code")

        self.logger.info(
            "account_created",
            account_id=account.id,
            wallet=wallet_address,
            referral_code=account.referral_code,
        )

        if pending_referral_code:
            from nexus.referral.service import ReferralService

            referral_service = ReferralService(self.database, accounts=self)
            result = referral_service.submit_referral_code(account.id, pending_referral_code)
            if result.success:
                account = self.get_account(account.id)
            else:
                # Account is created either way
                self.logger.warning(
                    "pending_referral_not_applied",
                    account_id=account.id,
                    code=pending_referral_code,
                    error_kind=result.error_kind,
                )

        return account

    def get_account(self, account_id: str) -> Account | None:
        """Get account by ID."""
        with self.database.session() as session:
            return AccountRepository(session).get_by_id(account_id)

    def require_account(self, account_id: str) -> Account:
        """Get account by ID or raise AccountNotFoundError."""
        account = self.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def get_account_by_wallet(self, wallet_address: str) -> Account | None:
        """Get account by wallet address."""
        with self.database.session() as session:
            return AccountRepository(session).get_by_wallet(wallet_address)

    def get_account_by_referral_code(self, code: str) -> Account | None:
        """Get the account owning a referral code."""
        with self.database.session() as session:
            return AccountRepository(session).get_by_referral_code(code)

    def update_account(
        self,
        account_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> Account:
        """Update account fields.

        Args:
            account_id: Account ID
            fields: Column values to write
            expected_version: When given, the write only succeeds if the
                account is still at this version

        Returns:
            Updated account

        Raises:
            ValueError: If an immutable field is included
            AccountNotFoundError: If the account does not exist
            AccountConflictError: If the account changed since expected_version
        """
        forbidden = IMMUTABLE_FIELDS.intersection(fields)
        if forbidden:
            raise ValueError(f"Fields cannot be updated directly: {', '.join(sorted(forbidden))}")

        fields = dict(fields)
        if "experience" in fields:
            fields["level"] = level_for_experience(fields["experience"])

        with self.database.session() as session:
            accounts = AccountRepository(session)
            updated = accounts.update_fields(account_id, fields, expected_version)
            if not updated:
                if accounts.get_by_id(account_id) is None:
                    raise AccountNotFoundError(account_id)
                raise AccountConflictError(account_id, expected_version)
            account = accounts.get_by_id(account_id)

        self.logger.debug("account_updated", account_id=account_id, fields=sorted(fields))
        return account

    def touch_login(self, account_id: str) -> Account:
        """Record a login for the account."""
        return self.update_account(account_id, {"last_login_at": utcnow()})

    def list_referred_accounts(self, referrer_id: str) -> list[Account]:
        """Accounts that redeemed the given account's referral code."""
        with self.database.session() as session:
            accounts = AccountRepository(session)
            referrer = accounts.get_by_id(referrer_id)
            if referrer is None:
                raise AccountNotFoundError(referrer_id)
            return accounts.list_referred_by(referrer.wallet_address)

    def import_legacy_account(self, doc: dict[str, Any]) -> Account:
        """Import one legacy account document.

        The imported point balance is recorded as an opening ledger entry so
        the ledger keeps reconciling with total_points. Referral counters start
        at zero: they only count referrer bonuses present in the ledger.

        Raises:
            ValueError: If the document is unusable
            DuplicateWalletError: If the wallet already has an account
        """
        record = from_legacy_document(doc)

        with self.database.session() as session:
            accounts = AccountRepository(session)
            if accounts.get_by_wallet(record.wallet_address):
                raise DuplicateWalletError(record.wallet_address)

            code = record.referral_code
            if code is None or accounts.code_exists(code):
                if code is not None:
                    self.logger.warning(
                        "legacy_referral_code_reissued",
                        wallet=record.wallet_address,
                        code=code,
                    )
                code = self._unique_code(accounts)

            if record.id and accounts.get_by_id(record.id):
                record.id = None

            now = utcnow()
            account = Account(
                wallet_address=record.wallet_address,
                network=record.network,
                public_key=record.public_key,
                display_name=record.display_name,
                level=record.level,
                experience=record.experience,
                total_points=record.total_points,
                referral_code=code,
                referred_by=record.referred_by,
                referred_at=record.referred_at,
                created_at=record.created_at or now,
                updated_at=now,
                last_login_at=record.last_login_at,
            )
            if record.id:
                account.id = record.id
            accounts.add(account)

            if record.total_points > 0:
                PointsTransactionRepository(session).add(PointsTransaction(
                    user_id=account.id,
                    type=TransactionType.BONUS,
                    amount=record.total_points,
                    experience=record.experience,
                    reason=LEGACY_BALANCE_REASON,
                    source_key=f"legacy:{account.id}",
                    timestamp=now,
                ))

        self.logger.info(
            "legacy_account_imported",
            account_id=account.id,
            wallet=account.wallet_address,
            total_points=account.total_points,
            # Counters are rebuilt from referrer ledger entries, which legacy data lacks
            legacy_referrals_count=record.referrals_count,
            legacy_referral_points=record.total_referral_points,
        )
        return account


# Singleton instance
account_service = AccountService()
