"""Accounts API v1 endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from nexus.accounts.exceptions import DuplicateWalletError
from nexus.accounts.models import Account
from nexus.accounts.service import AccountService
from nexus.api.deps import get_account_service, require_account
from nexus.api.rate_limit import limiter
from nexus.logging_config import get_logger
from nexus.referral.service import get_referral_status

logger = get_logger(__name__)

router = APIRouter(prefix="/accounts", tags=["accounts"])


# ==================== MODELS ====================


class CreateAccountRequest(BaseModel):
    """Request to create an account for a connected wallet."""
    wallet_address: str = Field(..., min_length=1, max_length=128)
    network: str = Field(default="TESTNET", max_length=20)
    public_key: str | None = Field(default=None, max_length=128)
    display_name: str | None = Field(default=None, max_length=100)
    referral_code: str | None = Field(default=None, max_length=32)


class UpdateAccountRequest(BaseModel):
    """Request to update profile fields."""
    display_name: str | None = Field(default=None, max_length=100)


class AccountResponse(BaseModel):
    """Account information."""
    id: str
    wallet_address: str
    network: str
    display_name: str | None
    level: int
    experience: int
    total_points: int
    referral_code: str
    referred_by: str | None
    referred_at: datetime | None
    referral_status: str
    referrals_count: int
    total_referral_points: int
    created_at: datetime

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            wallet_address=account.wallet_address,
            network=account.network,
            display_name=account.display_name,
            level=account.level,
            experience=account.experience,
            total_points=account.total_points,
            referral_code=account.referral_code,
            referred_by=account.referred_by,
            referred_at=account.referred_at,
            referral_status=get_referral_status(account).value,
            referrals_count=account.referrals_count,
            total_referral_points=account.total_referral_points,
            created_at=account.created_at,
        )


# ==================== ENDPOINTS ====================


@router.post("", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_account(
    request: Request,
    body: CreateAccountRequest,
    accounts: AccountService = Depends(get_account_service),
):
    """Create an account on first wallet connection.

    A referral code captured before the wallet connected (e.g. from a
    ?ref= link) is applied right after creation.
    """
    pending_code = body.referral_code.strip().upper() if body.referral_code else None
    try:
        account = accounts.create_account(
            wallet_address=body.wallet_address,
            network=body.network,
            public_key=body.public_key,
            display_name=body.display_name,
            pending_referral_code=pending_code,
        )
    except DuplicateWalletError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return AccountResponse.from_account(account)


@router.get("/me", response_model=AccountResponse)
async def get_my_account(
    account: Account = Depends(require_account),
    accounts: AccountService = Depends(get_account_service),
):
    """Get the connected wallet's account and record the login."""
    account = accounts.touch_login(account.id)
    return AccountResponse.from_account(account)


@router.patch("/me", response_model=AccountResponse)
async def update_my_account(
    body: UpdateAccountRequest,
    account: Account = Depends(require_account),
    accounts: AccountService = Depends(get_account_service),
):
    """Update profile fields of the connected wallet's account."""
    fields = body.model_dump(exclude_unset=True)
    if not fields:
        return AccountResponse.from_account(account)
    account = accounts.update_account(account.id, fields)
    return AccountResponse.from_account(account)


@router.get("/{wallet_address}", response_model=AccountResponse)
async def get_account_by_wallet(
    wallet_address: str,
    accounts: AccountService = Depends(get_account_service),
):
    """Get an account by wallet address."""
    account = accounts.get_account_by_wallet(wallet_address)
    if account is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    return AccountResponse.from_account(account)
