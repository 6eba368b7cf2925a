"""Points ledger API v1 endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from nexus.accounts.models import Account
from nexus.api.deps import get_points_ledger, require_account
from nexus.ledger.service import PointsLedger

router = APIRouter(prefix="/ledger", tags=["ledger"])


class TransactionResponse(BaseModel):
    """One ledger entry."""
    id: str
    type: str
    amount: int
    experience: int
    reason: str
    demo_id: str | None
    timestamp: datetime


class AuditResponse(BaseModel):
    """Ledger reconciliation for the current account."""
    user_id: str
    ledger_total: int
    account_total: int
    drift: int
    consistent: bool


@router.get("/history", response_model=list[TransactionResponse])
async def get_history(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    account: Account = Depends(require_account),
    ledger: PointsLedger = Depends(get_points_ledger),
):
    """Get the current account's transactions, newest first."""
    return [
        TransactionResponse(
            id=tx.id,
            type=tx.type.value,
            amount=tx.amount,
            experience=tx.experience,
            reason=tx.reason,
            demo_id=tx.demo_id,
            timestamp=tx.timestamp,
        )
        for tx in ledger.history(account.id, limit=limit, offset=offset)
    ]


@router.get("/audit", response_model=AuditResponse)
async def get_audit(
    account: Account = Depends(require_account),
    ledger: PointsLedger = Depends(get_points_ledger),
):
    """Compare the ledger with the account's point total."""
    audit = ledger.audit(account.id)
    return AuditResponse(
        user_id=audit.user_id,
        ledger_total=audit.ledger_total,
        account_total=audit.account_total,
        drift=audit.drift,
        consistent=audit.consistent,
    )
