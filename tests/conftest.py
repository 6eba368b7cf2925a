"""
Pytest configuration and shared fixtures.

Every test gets its own file-backed SQLite database with services wired
to it explicitly.
"""
import itertools

import pytest
from sqlalchemy import update

from nexus.accounts.models import Account
from nexus.accounts.service import AccountService
from nexus.ledger.service import PointsLedger
from nexus.referral.invitations import ReferralInvitationService
from nexus.referral.service import ReferralService
from nexus.referral.stats import ReferralStatsAggregator
from nexus.storage.db import Database


@pytest.fixture
def database(tmp_path):
    """Fresh database with all tables"""
    database = Database(f"sqlite:///{tmp_path / 'rewards.db'}", timeout_seconds=30)
    database.create_tables()
    yield database
    database.dispose()


@pytest.fixture
def accounts(database):
    return AccountService(database)


@pytest.fixture
def ledger(database):
    return PointsLedger(database)


@pytest.fixture
def invitations(database):
    return ReferralInvitationService(database)


@pytest.fixture
def stats(database, accounts, ledger):
    return ReferralStatsAggregator(database, accounts=accounts, ledger=ledger, max_attempts=3)


@pytest.fixture
def referral_service(database, accounts, ledger, stats, invitations):
    return ReferralService(
        database,
        accounts=accounts,
        ledger=ledger,
        stats=stats,
        invitations=invitations,
        max_attempts=3,
    )


@pytest.fixture
def make_account(database, accounts):
    """Factory creating accounts, optionally with a fixed referral code"""
    counter = itertools.count(1)

    def _make(wallet_address=None, code=None, display_name=None):
        wallet_address = wallet_address or f"GTEST{next(counter):051d}"
        account = accounts.create_account(wallet_address, display_name=display_name)
        if code:
            with database.session() as session:
                session.execute(
                    update(Account)
                    .where(Account.id == account.id)
                    .values(referral_code=code)
                )
            account = accounts.get_account(account.id)
        return account

    return _make


@pytest.fixture
def alice(make_account):
    """Referrer owning code AAAA1111"""
    return make_account(code="AAAA1111", display_name="Alice")


@pytest.fixture
def bob(make_account):
    """Fresh account that has not redeemed any code"""
    return make_account(display_name="Bob")
