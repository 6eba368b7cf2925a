"""Referral code format and reward amounts.

These values are shared with the web client and must not change.
"""

import re
from enum import Enum

REFERRAL_CODE_LENGTH = 8
REFERRAL_CODE_PATTERN = re.compile(r"^[A-Z0-9]{8}$")

# Points and XP awarded to the owner of the redeemed code
REFERRER_POINTS = 50
REFERRER_XP = 500

# Points and XP awarded to the account redeeming the code
REFERRED_POINTS = 50
REFERRED_XP = 500

# Ledger reasons for the two sides of a referral
REASON_REFERRER_BONUS = "referral_referrer_bonus"
REASON_REFERRED_BONUS = "referral_referred_bonus"


class ReferralStatus(str, Enum):
    """Referral linkage / invitation status."""
    ACTIVATED = "activated"
    PENDING = "pending"


def referral_source_key(referred_account_id: str) -> str:
    """Idempotence key shared by both ledger entries of one referral."""
    return f"referral:{referred_account_id}"
