"""Points ledger: append-only log of every point/XP grant and deduction."""

import json
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from nexus.accounts.exceptions import AccountNotFoundError
from nexus.ledger.exceptions import (
    DuplicateTransactionError,
    InsufficientPointsError,
    InvalidTransactionError,
)
from nexus.ledger.models import PointsTransaction, TransactionType
from nexus.logging_config import get_logger
from nexus.storage.db import Database, db
from nexus.storage.models import utcnow
from nexus.storage.repo import AccountRepository, PointsTransactionRepository

logger = get_logger(__name__)


@dataclass
class LedgerAudit:
    """Result of reconciling an account against its ledger."""

    user_id: str
    ledger_total: int
    account_total: int

    @property
    def drift(self) -> int:
        return self.account_total - self.ledger_total

    @property
    def consistent(self) -> bool:
        return self.drift == 0


class PointsLedger:
    """Service for recording point transactions.

    Entries are never updated or deleted. Appending an entry and applying it
    to the owning account's totals happen in the same database transaction.
    """

    def __init__(self, database: Database | None = None):
        self.database = database or db
        self.logger = get_logger(__name__)

    def append_transaction(
        self,
        session: Session,
        user_id: str,
        transaction_type: TransactionType | str,
        amount: int,
        reason: str,
        experience: int = 0,
        demo_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        source_key: str | None = None,
        apply_to_account: bool = True,
    ) -> PointsTransaction:
        """Append a transaction inside the caller's database transaction.

        Args:
            session: Open session; the caller commits
            user_id: Owning account ID
            transaction_type: earn, spend, bonus or penalty
            amount: Positive point amount, the sign follows from type
            reason: Classification tag, e.g. referral_referred_bonus
            experience: XP granted alongside the points
            demo_id: Optional demo reference
            metadata: Optional JSON-serializable details
            source_key: Optional idempotence key, unique per reason
            apply_to_account: Also adjust the account's points/XP/level.
                False when the caller already applied them in the same transaction.

        Returns:
            The appended transaction

        Raises:
            InvalidTransactionError: If amount/type/experience are invalid
            AccountNotFoundError: If the account does not exist
            InsufficientPointsError: If a deduction exceeds the balance
            DuplicateTransactionError: If (reason, source_key) was already recorded
        """
        try:
            tx_type = TransactionType(transaction_type)
        except ValueError:
            raise InvalidTransactionError(f"Unknown transaction type: {transaction_type}")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidTransactionError("Amount must be a positive integer")
        if experience < 0:
            raise InvalidTransactionError("Experience cannot be negative")
        if not reason:
            raise InvalidTransactionError("Reason is required")

        accounts = AccountRepository(session)
        transactions = PointsTransactionRepository(session)

        if source_key is not None and transactions.get_by_source(reason, source_key):
            raise DuplicateTransactionError(reason, source_key)

        if apply_to_account:
            account = accounts.get_by_id(user_id)
            if account is None:
                raise AccountNotFoundError(user_id)
            if tx_type.sign < 0 and account.total_points < amount:
                raise InsufficientPointsError(amount, account.total_points)
            # The balance may have dropped since the read; the update re-checks it
            if not accounts.apply_points(user_id, tx_type.sign * amount, experience):
                current = accounts.get_by_id(user_id)
                raise InsufficientPointsError(amount, current.total_points if current else 0)

        try:
            transaction = transactions.add(PointsTransaction(
                user_id=user_id,
                type=tx_type,
                amount=amount,
                experience=experience,
                reason=reason,
                demo_id=demo_id,
                source_key=source_key,
                metadata_json=json.dumps(metadata) if metadata else None,
                timestamp=utcnow(),
            ))
        except IntegrityError:
            if source_key is not None:
                raise DuplicateTransactionError(reason, source_key)
            raise

        self.logger.info(
            "points_transaction_appended",
            transaction_id=transaction.id,
            user_id=user_id,
            type=tx_type.value,
            amount=amount,
            experience=experience,
            reason=reason,
        )
        return transaction

    def grant(
        self,
        user_id: str,
        transaction_type: TransactionType | str,
        amount: int,
        reason: str,
        experience: int = 0,
        demo_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        source_key: str | None = None,
    ) -> PointsTransaction:
        """Record a transaction and apply it to the account in one unit."""
        with self.database.session() as session:
            return self.append_transaction(
                session,
                user_id=user_id,
                transaction_type=transaction_type,
                amount=amount,
                reason=reason,
                experience=experience,
                demo_id=demo_id,
                metadata=metadata,
                source_key=source_key,
            )

    def sum_for_user(self, user_id: str) -> int:
        """Earned and bonus points minus spent and penalty points."""
        with self.database.session() as session:
            return PointsTransactionRepository(session).sum_for_user(user_id)

    def history(self, user_id: str, limit: int = 50, offset: int = 0) -> list[PointsTransaction]:
        """Get a user's transaction history, newest first."""
        with self.database.session() as session:
            return PointsTransactionRepository(session).list_for_user(user_id, limit, offset)

    def audit(self, user_id: str) -> LedgerAudit:
        """Compare the ledger sum with the account's cached total.

        Raises:
            AccountNotFoundError: If the account does not exist
        """
        with self.database.session() as session:
            account = AccountRepository(session).get_by_id(user_id)
            if account is None:
                raise AccountNotFoundError(user_id)
            ledger_total = PointsTransactionRepository(session).sum_for_user(user_id)

        audit = LedgerAudit(
            user_id=user_id,
            ledger_total=ledger_total,
            account_total=account.total_points,
        )
        if not audit.consistent:
            self.logger.warning(
                "ledger_drift_detected",
                user_id=user_id,
                ledger_total=audit.ledger_total,
                account_total=audit.account_total,
            )
        return audit


# Singleton instance
points_ledger = PointsLedger()
