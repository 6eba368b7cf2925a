"""
Tests for the account store.
"""
import pytest

from nexus.accounts import service as account_module
from nexus.accounts.exceptions import AccountConflictError, AccountNotFoundError, DuplicateWalletError
from nexus.referral.codes import is_valid_format


class TestCreateAccount:
    """Tests for AccountService.create_account"""

    def test_new_account_defaults(self, accounts):
        """A new account starts at level 1 with a fresh code"""
        account = accounts.create_account("GWALLET1", network="testnet", display_name="Carol")

        assert account.network == "TESTNET"
        assert account.level == 1
        assert account.experience == 0
        assert account.total_points == 0
        assert account.referred_by is None
        assert account.referred_at is None
        assert account.referrals_count == 0
        assert account.total_referral_points == 0
        assert account.version == 1
        assert is_valid_format(account.referral_code)

    def test_codes_are_unique(self, make_account):
        codes = {make_account().referral_code for _ in range(25)}
        assert len(codes) == 25

    def test_duplicate_wallet_rejected(self, accounts):
        accounts.create_account("GWALLET1")
        with pytest.raises(DuplicateWalletError):
            accounts.create_account("GWALLET1")

    def test_code_collision_is_retried(self, accounts, alice, monkeypatch):
        """Generated codes already owned by someone are skipped"""
        candidates = iter(["AAAA1111", "AAAA1111", "BBBB2222"])
        monkeypatch.setattr(account_module, "generate_code", lambda: next(candidates))

        account = accounts.create_account("GWALLET2")

        assert account.referral_code == "BBBB2222"

    def test_pending_referral_code_applied(self, accounts, alice):
        """A code captured before the wallet connected is redeemed on creation"""
        account = accounts.create_account("GWALLET3", pending_referral_code="AAAA1111")

        assert account.referred_by == alice.wallet_address
        assert account.total_points == 50
        assert account.experience == 500

    def test_invalid_pending_code_does_not_block_creation(self, accounts):
        account = accounts.create_account("GWALLET4", pending_referral_code="ZZZZ9999")

        assert account.referred_by is None
        assert accounts.get_account_by_wallet("GWALLET4") is not None


class TestUpdateAccount:
    """Tests for AccountService.update_account"""

    def test_update_bumps_version(self, accounts, bob):
        updated = accounts.update_account(bob.id, {"display_name": "Robert"})

        assert updated.display_name == "Robert"
        assert updated.version == bob.version + 1

    def test_experience_recomputes_level(self, accounts, bob):
        updated = accounts.update_account(bob.id, {"experience": 2500})

        assert updated.level == 3

    def test_stale_version_conflicts(self, accounts, bob):
        accounts.update_account(bob.id, {"display_name": "First"})

        with pytest.raises(AccountConflictError):
            accounts.update_account(bob.id, {"display_name": "Second"}, expected_version=bob.version)

        assert accounts.get_account(bob.id).display_name == "First"

    def test_matching_version_succeeds(self, accounts, bob):
        updated = accounts.update_account(bob.id, {"is_active": False}, expected_version=bob.version)

        assert updated.is_active is False

    @pytest.mark.parametrize("field", ["referral_code", "referred_by", "referred_at", "wallet_address"])
    def test_immutable_fields_rejected(self, accounts, bob, field):
        with pytest.raises(ValueError):
            accounts.update_account(bob.id, {field: "AAAA1111"})

    def test_missing_account(self, accounts):
        with pytest.raises(AccountNotFoundError):
            accounts.update_account("missing", {"display_name": "Nobody"})


class TestLookups:
    """Tests for account lookups"""

    def test_get_by_referral_code(self, accounts, alice):
        assert accounts.get_account_by_referral_code("AAAA1111").id == alice.id
        assert accounts.get_account_by_referral_code("ZZZZ9999") is None

    def test_require_account(self, accounts):
        with pytest.raises(AccountNotFoundError):
            accounts.require_account("missing")

    def test_touch_login(self, accounts, bob):
        touched = accounts.touch_login(bob.id)

        assert touched.last_login_at >= bob.last_login_at

    def test_name_falls_back_to_anonymous(self, make_account):
        assert make_account().name == "Anonymous User"
        assert make_account(display_name="Dana").name == "Dana"
