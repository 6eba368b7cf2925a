"""
Tests for the points ledger.
"""
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError

from nexus.accounts.exceptions import AccountNotFoundError
from nexus.ledger.exceptions import (
    DuplicateTransactionError,
    InsufficientPointsError,
    InvalidTransactionError,
)
from nexus.ledger.models import TransactionType
from nexus.storage.repo import AccountRepository


class TestGrant:
    """Tests for PointsLedger.grant"""

    def test_earn_updates_account(self, ledger, accounts, bob):
        tx = ledger.grant(bob.id, TransactionType.EARN, 30, "demo_completed", experience=1200, demo_id="demo-1")

        account = accounts.get_account(bob.id)
        assert tx.signed_amount == 30
        assert account.total_points == 30
        assert account.experience == 1200
        assert account.level == 2

    def test_string_type_accepted(self, ledger, accounts, bob):
        ledger.grant(bob.id, "bonus", 10, "welcome")

        assert accounts.get_account(bob.id).total_points == 10

    def test_spend_and_penalty_are_negative(self, ledger, accounts, bob):
        ledger.grant(bob.id, TransactionType.EARN, 100, "demo_completed")
        ledger.grant(bob.id, TransactionType.SPEND, 30, "shop_purchase")
        tx = ledger.grant(bob.id, TransactionType.PENALTY, 20, "abuse")

        assert tx.signed_amount == -20
        assert accounts.get_account(bob.id).total_points == 50
        assert ledger.sum_for_user(bob.id) == 50

    def test_insufficient_points(self, ledger, accounts, bob):
        ledger.grant(bob.id, TransactionType.EARN, 10, "demo_completed")

        with pytest.raises(InsufficientPointsError) as exc_info:
            ledger.grant(bob.id, TransactionType.SPEND, 11, "shop_purchase")

        assert exc_info.value.available == 10
        assert accounts.get_account(bob.id).total_points == 10

    @pytest.mark.parametrize("amount", [0, -5, 1.5, True])
    def test_invalid_amount(self, ledger, bob, amount):
        with pytest.raises(InvalidTransactionError):
            ledger.grant(bob.id, TransactionType.EARN, amount, "demo_completed")

    def test_invalid_type(self, ledger, bob):
        with pytest.raises(InvalidTransactionError):
            ledger.grant(bob.id, "refund", 10, "demo_completed")

    def test_unknown_account(self, ledger):
        with pytest.raises(AccountNotFoundError):
            ledger.grant("missing", TransactionType.EARN, 10, "demo_completed")

    def test_duplicate_source_key(self, ledger, accounts, bob):
        ledger.grant(bob.id, TransactionType.EARN, 25, "demo_completed", source_key="demo-1")

        with pytest.raises(DuplicateTransactionError):
            ledger.grant(bob.id, TransactionType.EARN, 25, "demo_completed", source_key="demo-1")

        assert accounts.get_account(bob.id).total_points == 25
        assert len(ledger.history(bob.id)) == 1

    def test_same_source_key_other_reason(self, ledger, bob):
        ledger.grant(bob.id, TransactionType.EARN, 25, "demo_completed", source_key="demo-1")
        ledger.grant(bob.id, TransactionType.BONUS, 5, "demo_streak", source_key="demo-1")

        assert ledger.sum_for_user(bob.id) == 30


class TestHistoryAndAudit:
    """Tests for history and audit"""

    def test_history_newest_first(self, ledger, bob):
        for amount in (1, 2, 3):
            ledger.grant(bob.id, TransactionType.EARN, amount, "demo_completed")

        assert [tx.amount for tx in ledger.history(bob.id)] == [3, 2, 1]
        assert [tx.amount for tx in ledger.history(bob.id, limit=1, offset=1)] == [2]

    def test_metadata_round_trip(self, ledger, bob):
        tx = ledger.grant(bob.id, TransactionType.BONUS, 5, "welcome", metadata={"campaign": "launch"})

        assert tx.metadata_dict == {"campaign": "launch"}

    def test_empty_ledger_sums_to_zero(self, ledger, bob):
        assert ledger.sum_for_user(bob.id) == 0
        assert ledger.audit(bob.id).consistent

    def test_audit_detects_drift(self, ledger, accounts, bob):
        ledger.grant(bob.id, TransactionType.EARN, 40, "demo_completed")
        accounts.update_account(bob.id, {"total_points": 45})

        audit = ledger.audit(bob.id)

        assert audit.ledger_total == 40
        assert audit.account_total == 45
        assert audit.drift == 5
        assert not audit.consistent

    def test_audit_unknown_account(self, ledger):
        with pytest.raises(AccountNotFoundError):
            ledger.audit("missing")


class TestBalanceNeverNegative:
    """Deductions are re-checked by the balance update itself"""

    def test_stale_balance_read_is_rejected(self, ledger, accounts, bob, monkeypatch):
        """A deduction approved on an outdated balance still fails"""
        ledger.grant(bob.id, TransactionType.EARN, 100, "demo_completed")
        get_by_id = AccountRepository.get_by_id
        calls = []

        def stale_first_read(self, account_id):
            calls.append(account_id)
            if len(calls) == 1:
                # Balance as seen before a concurrent spend of 80
                return SimpleNamespace(id=account_id, total_points=100)
            return get_by_id(self, account_id)

        accounts.update_account(bob.id, {"total_points": 20})
        monkeypatch.setattr(AccountRepository, "get_by_id", stale_first_read)

        with pytest.raises(InsufficientPointsError) as exc_info:
            ledger.grant(bob.id, TransactionType.SPEND, 80, "shop_purchase")

        assert exc_info.value.available == 20
        monkeypatch.undo()
        assert accounts.get_account(bob.id).total_points == 20
        assert len(ledger.history(bob.id)) == 1

    def test_conditional_update_skips_overdraft(self, database, ledger, bob):
        ledger.grant(bob.id, TransactionType.EARN, 10, "demo_completed")

        with database.session() as session:
            assert AccountRepository(session).apply_points(bob.id, -11) == 0
            assert AccountRepository(session).apply_points(bob.id, -10) == 1

    def test_negative_total_violates_constraint(self, accounts, bob):
        with pytest.raises(IntegrityError):
            accounts.update_account(bob.id, {"total_points": -1})
