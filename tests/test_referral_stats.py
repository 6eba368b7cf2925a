"""
Tests for referrer credit and referral statistics.
"""
import pytest

from nexus.accounts.exceptions import AccountConflictError, AccountNotFoundError
from nexus.accounts.service import AccountService
from nexus.ledger.models import TransactionType
from nexus.referral.constants import REASON_REFERRED_BONUS, referral_source_key
from nexus.referral.exceptions import ReferrerUnavailableError, TransientFailureError


class TestRecordReferral:
    """Tests for ReferralStatsAggregator.record_referral"""

    def test_credits_once(self, stats, accounts, ledger, alice, bob):
        assert stats.record_referral(alice.id, bob.id, "AAAA1111") is True
        assert stats.record_referral(alice.id, bob.id, "AAAA1111") is False

        alice_after = accounts.get_account(alice.id)
        assert alice_after.referrals_count == 1
        assert alice_after.total_referral_points == 50
        assert alice_after.total_points == 50
        assert len(ledger.history(alice.id)) == 1

    def test_missing_referrer(self, stats, bob):
        with pytest.raises(ReferrerUnavailableError):
            stats.record_referral("missing", bob.id)

    def test_inactive_referrer(self, stats, accounts, alice, bob):
        accounts.update_account(alice.id, {"is_active": False})

        with pytest.raises(ReferrerUnavailableError):
            stats.record_referral(alice.id, bob.id)

        assert accounts.get_account(alice.id).referrals_count == 0


class TestRecomputeReferralStats:
    """Tests for ReferralStatsAggregator.recompute_referral_stats"""

    def test_recompute_is_idempotent(self, stats, referral_service, accounts, alice, bob):
        referral_service.apply_referral_code(bob.id, "AAAA1111")
        version = accounts.get_account(alice.id).version

        first = stats.recompute_referral_stats(alice.id)
        second = stats.recompute_referral_stats(alice.id)

        assert first == second
        assert (first.referrals_count, first.total_referral_points) == (1, 50)
        # Nothing changed, so nothing was written
        assert accounts.get_account(alice.id).version == version

    def test_recompute_repairs_drift(self, stats, referral_service, accounts, alice, bob):
        referral_service.apply_referral_code(bob.id, "AAAA1111")
        accounts.update_account(alice.id, {"referrals_count": 7, "total_referral_points": 3})

        result = stats.recompute_referral_stats(alice.id)

        assert (result.referrals_count, result.total_referral_points) == (1, 50)
        assert stats.get_stats(alice.id) == result

    def test_recompute_without_referrals(self, stats, bob):
        result = stats.recompute_referral_stats(bob.id)

        assert (result.referrals_count, result.total_referral_points) == (0, 0)

    def test_recompute_missing_account(self, stats):
        with pytest.raises(AccountNotFoundError):
            stats.recompute_referral_stats("missing")

    def test_recompute_gives_up_on_constant_conflicts(self, stats, accounts, alice, monkeypatch):
        accounts.update_account(alice.id, {"referrals_count": 2})

        def always_conflict(self, account_id, fields, expected_version=None):
            raise AccountConflictError(account_id, expected_version)

        monkeypatch.setattr(AccountService, "update_account", always_conflict)

        with pytest.raises(TransientFailureError):
            stats.recompute_referral_stats(alice.id)


class TestReconcileReferrerCredits:
    """Tests for ReferralStatsAggregator.reconcile_referrer_credits"""

    def test_nothing_to_reconcile(self, stats, referral_service, alice, bob):
        referral_service.apply_referral_code(bob.id, "AAAA1111")

        report = stats.reconcile_referrer_credits()

        assert report.scanned == 0

    def test_entry_without_referrer_stays_pending(self, stats, ledger, bob):
        ledger.grant(
            bob.id,
            TransactionType.BONUS,
            50,
            REASON_REFERRED_BONUS,
            experience=500,
            source_key=referral_source_key(bob.id),
        )

        report = stats.reconcile_referrer_credits()

        assert report.pending == [bob.id]
        assert report.repaired == []
