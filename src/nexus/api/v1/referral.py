"""Referral API v1 endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from nexus.accounts.exceptions import AccountNotFoundError
from nexus.accounts.models import Account
from nexus.accounts.service import AccountService
from nexus.api.deps import (
    get_account_service,
    get_invitation_service,
    get_referral_service,
    get_stats_aggregator,
    require_account,
)
from nexus.api.rate_limit import limiter
from nexus.logging_config import get_logger
from nexus.referral.codes import normalize_code
from nexus.referral.constants import REFERRED_POINTS, REFERRED_XP, ReferralStatus
from nexus.referral.exceptions import ReferralErrorKind
from nexus.referral.invitations import ReferralInvitationService
from nexus.referral.service import ReferralService
from nexus.referral.stats import ReferralStatsAggregator

logger = get_logger(__name__)

router = APIRouter(prefix="/referral", tags=["referral"])

# Duplicate submissions are not an error for the client
ERROR_STATUS = {
    ReferralErrorKind.INVALID_FORMAT: status.HTTP_400_BAD_REQUEST,
    ReferralErrorKind.SELF_REFERRAL: status.HTTP_400_BAD_REQUEST,
    ReferralErrorKind.CODE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ReferralErrorKind.ACCOUNT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ReferralErrorKind.ALREADY_REFERRED: status.HTTP_200_OK,
    ReferralErrorKind.REFERRER_UNAVAILABLE: status.HTTP_409_CONFLICT,
    ReferralErrorKind.TRANSIENT_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


# ==================== MODELS ====================


class ApplyCodeRequest(BaseModel):
    """Request to apply a referral code."""
    code: str = Field(..., max_length=32)


class ApplyCodeResponse(BaseModel):
    """Result consumed by the bonus-claimed notification."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    bonus_earned: int | None = None
    referrer_name: str | None = None
    referral_code: str | None = None
    error_kind: str | None = None
    message: str | None = None


class ValidateCodeRequest(BaseModel):
    """Request to validate a referral code."""
    code: str = Field(..., max_length=32)


class ValidateCodeResponse(BaseModel):
    """Response from code validation."""
    valid: bool
    referrer_name: str | None = None
    bonus_points: int = REFERRED_POINTS
    bonus_experience: int = REFERRED_XP


class ReferralSummaryResponse(BaseModel):
    """Referral overview for the current account."""
    code: str
    link: str
    status: str
    referred_by: str | None
    referred_at: str | None
    referrals_count: int
    total_referral_points: int


class ReferredAccountResponse(BaseModel):
    """An account that redeemed the current account's code."""
    wallet_address: str
    display_name: str | None
    referred_at: datetime | None


class InviteRequest(BaseModel):
    """Request to invite someone by email."""
    email: EmailStr


class InvitationResponse(BaseModel):
    """Invitation information."""
    id: str
    invited_email: str
    referral_code: str
    status: str
    invited_at: datetime
    activated_at: datetime | None
    points_earned: int


class ReferralStatsResponse(BaseModel):
    """Recomputed referrer counters."""
    referrals_count: int
    total_referral_points: int


# ==================== ENDPOINTS ====================


@router.post("/apply", response_model=ApplyCodeResponse, response_model_exclude_none=True)
@limiter.limit("10/minute")
async def apply_referral_code(
    request: Request,
    body: ApplyCodeRequest,
    account: Account = Depends(require_account),
    referral: ReferralService = Depends(get_referral_service),
):
    """Apply someone else's referral code to the current account.

    Submitting again after success answers 200 with errorKind
    "already_referred" so a double click never shows an error.
    """
    result = referral.submit_referral_code(account.id, normalize_code(body.code))
    payload = ApplyCodeResponse(**result.to_dict())

    if result.success:
        return payload
    return JSONResponse(
        status_code=ERROR_STATUS[result.error_kind],
        content=payload.model_dump(by_alias=True, exclude_none=True),
    )


@router.post("/validate", response_model=ValidateCodeResponse)
@limiter.limit("30/minute")
async def validate_referral_code(
    request: Request,
    body: ValidateCodeRequest,
    referral: ReferralService = Depends(get_referral_service),
):
    """Check a code before applying it and get the referrer's name."""
    referrer = referral.validate_code(normalize_code(body.code))
    if referrer is None:
        return ValidateCodeResponse(valid=False)

    return ValidateCodeResponse(valid=True, referrer_name=referrer.display_name)


@router.get("/summary", response_model=ReferralSummaryResponse)
async def get_referral_summary(
    account: Account = Depends(require_account),
    referral: ReferralService = Depends(get_referral_service),
):
    """Get the current account's code, link, status and counters."""
    return ReferralSummaryResponse(**referral.get_referral_summary(account.id))


@router.get("/referred", response_model=list[ReferredAccountResponse])
async def list_referred_accounts(
    account: Account = Depends(require_account),
    accounts: AccountService = Depends(get_account_service),
):
    """List accounts that redeemed the current account's code."""
    return [
        ReferredAccountResponse(
            wallet_address=referred.wallet_address,
            display_name=referred.display_name,
            referred_at=referred.referred_at,
        )
        for referred in accounts.list_referred_accounts(account.id)
    ]


@router.post("/invitations", response_model=InvitationResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/hour")
async def create_invitation(
    request: Request,
    body: InviteRequest,
    account: Account = Depends(require_account),
    invitations: ReferralInvitationService = Depends(get_invitation_service),
):
    """Record an email invitation carrying the current account's code."""
    try:
        invitation = invitations.create_invitation(account.id, body.email)
    except AccountNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    return _invitation_response(invitation)


@router.get("/invitations", response_model=list[InvitationResponse])
async def list_invitations(
    status_filter: ReferralStatus | None = Query(default=None, alias="status"),
    account: Account = Depends(require_account),
    invitations: ReferralInvitationService = Depends(get_invitation_service),
):
    """List invitations; ?status=activated gives the "My referrals" view."""
    if status_filter == ReferralStatus.ACTIVATED:
        items = invitations.get_activated_referrals(account.id)
    else:
        items = invitations.list_invitations(account.id)
        if status_filter is not None:
            items = [i for i in items if i.status == status_filter]
    return [_invitation_response(i) for i in items]


@router.post("/stats/recompute", response_model=ReferralStatsResponse)
async def recompute_referral_stats(
    account: Account = Depends(require_account),
    stats: ReferralStatsAggregator = Depends(get_stats_aggregator),
):
    """Rebuild the current account's referral counters from the ledger."""
    result = stats.recompute_referral_stats(account.id)
    return ReferralStatsResponse(
        referrals_count=result.referrals_count,
        total_referral_points=result.total_referral_points,
    )


def _invitation_response(invitation) -> InvitationResponse:
    return InvitationResponse(
        id=invitation.id,
        invited_email=invitation.invited_email,
        referral_code=invitation.referral_code,
        status=invitation.status.value,
        invited_at=invitation.invited_at,
        activated_at=invitation.activated_at,
        points_earned=invitation.points_earned,
    )
