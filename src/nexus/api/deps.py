"""FastAPI dependencies wiring services to the database."""

from fastapi import Depends, Header, HTTPException, status

from nexus.accounts.models import Account
from nexus.accounts.service import AccountService
from nexus.ledger.service import PointsLedger
from nexus.referral.invitations import ReferralInvitationService
from nexus.referral.service import ReferralService
from nexus.referral.stats import ReferralStatsAggregator
from nexus.storage.db import Database, db


def get_database() -> Database:
    return db


def get_account_service(database: Database = Depends(get_database)) -> AccountService:
    return AccountService(database)


def get_points_ledger(database: Database = Depends(get_database)) -> PointsLedger:
    return PointsLedger(database)


def get_invitation_service(database: Database = Depends(get_database)) -> ReferralInvitationService:
    return ReferralInvitationService(database)


def get_stats_aggregator(
    database: Database = Depends(get_database),
    accounts: AccountService = Depends(get_account_service),
    ledger: PointsLedger = Depends(get_points_ledger),
) -> ReferralStatsAggregator:
    return ReferralStatsAggregator(database, accounts=accounts, ledger=ledger)


def get_referral_service(
    database: Database = Depends(get_database),
    accounts: AccountService = Depends(get_account_service),
    ledger: PointsLedger = Depends(get_points_ledger),
    stats: ReferralStatsAggregator = Depends(get_stats_aggregator),
    invitations: ReferralInvitationService = Depends(get_invitation_service),
) -> ReferralService:
    return ReferralService(
        database,
        accounts=accounts,
        ledger=ledger,
        stats=stats,
        invitations=invitations,
    )


async def require_account(
    x_wallet_address: str | None = Header(default=None, alias="X-Wallet-Address"),
    accounts: AccountService = Depends(get_account_service),
) -> Account:
    """Resolve the calling account from the connected wallet."""
    if not x_wallet_address:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Wallet not connected",
        )

    account = accounts.get_account_by_wallet(x_wallet_address)
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No account for this wallet",
        )
    return account
