"""Read-adapter for account documents exported from the legacy document store.

Legacy documents carry progression twice (root-level ``level``,
``experience``, ``totalPoints`` and ``displayName`` next to the same fields
under ``profile``), keep referral statistics either at the root or under
``stats`` and encode timestamps in several ways. Everything is folded into
one normalized record here so the rest of the code only sees ``Account``.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from nexus.accounts.models import level_for_experience
from nexus.logging_config import get_logger
from nexus.referral.codes import is_valid_format
from nexus.storage.models import utcnow

logger = get_logger(__name__)


@dataclass
class LegacyAccountRecord:
    """Normalized view of a legacy account document."""

    wallet_address: str
    network: str
    id: str | None = None
    public_key: str | None = None
    display_name: str | None = None
    experience: int = 0
    total_points: int = 0
    referral_code: str | None = None
    referred_by: str | None = None
    referred_at: datetime | None = None
    referrals_count: int = 0
    total_referral_points: int = 0
    created_at: datetime | None = None
    last_login_at: datetime | None = None

    @property
    def level(self) -> int:
        return level_for_experience(self.experience)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse the timestamp encodings found in exported documents.

    Accepts datetimes, ISO-8601 strings, epoch seconds or milliseconds and
    serialized Firestore timestamps (``{"seconds": ..., "nanoseconds": ...}``
    or the ``_seconds`` variant). Returns naive UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            return None
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
        return parse_timestamp(float(seconds) + nanos / 1e9)
    if isinstance(value, (int, float)):
        # Millisecond epochs are 13 digits
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parse_timestamp(parsed)
    raise ValueError(f"Unsupported timestamp value: {value!r}")


def _non_negative_int(*candidates: Any) -> int:
    values = [int(c) for c in candidates if isinstance(c, (int, float)) and not isinstance(c, bool)]
    return max([0, *values])


def from_legacy_document(doc: dict[str, Any]) -> LegacyAccountRecord:
    """Normalize a legacy account document.

    Raises:
        ValueError: If the document has no wallet address
    """
    wallet_address = (doc.get("walletAddress") or "").strip()
    if not wallet_address:
        raise ValueError("Legacy account document has no walletAddress")

    profile = doc.get("profile") or {}
    stats = doc.get("stats") or {}

    # Root fields were updated by some writers, profile fields by others;
    # both only ever grew, so the larger value is the most recent one.
    experience = _non_negative_int(doc.get("experience"), profile.get("experience"))
    total_points = _non_negative_int(
        doc.get("totalPoints"), profile.get("totalPoints"), stats.get("totalPoints")
    )

    # "Anonymous User" was written as a placeholder, not chosen by the user
    names = [doc.get("displayName"), profile.get("displayName"), profile.get("username")]
    display_name = next((n for n in names if n and n != "Anonymous User"), None)

    referral_code = doc.get("referralCode")
    if not is_valid_format(referral_code):
        referral_code = None

    referred_by = doc.get("referredBy") or None
    if referred_by and referred_by in (wallet_address, doc.get("referralCode")):
        # Accounts cannot refer themselves
        logger.warning("legacy_self_referral_dropped", wallet=wallet_address, referred_by=referred_by)
        referred_by = None
    referred_at = parse_timestamp(doc.get("referredAt")) if referred_by else None
    if referred_by and referred_at is None:
        referred_at = parse_timestamp(doc.get("updatedAt")) or utcnow()

    return LegacyAccountRecord(
        id=doc.get("id") or None,
        wallet_address=wallet_address,
        network=(doc.get("network") or "TESTNET").upper(),
        public_key=doc.get("publicKey") or None,
        display_name=display_name,
        experience=experience,
        total_points=total_points,
        referral_code=referral_code,
        referred_by=referred_by,
        referred_at=referred_at,
        referrals_count=_non_negative_int(doc.get("referralsCount"), stats.get("referralsCount")),
        total_referral_points=_non_negative_int(
            doc.get("totalReferralPoints"), stats.get("totalReferralPoints")
        ),
        created_at=parse_timestamp(doc.get("createdAt")),
        last_login_at=parse_timestamp(doc.get("lastLoginAt")),
    )
