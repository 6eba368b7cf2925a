"""Referral code generation and format validation."""

import secrets

from nexus.referral.constants import REFERRAL_CODE_LENGTH, REFERRAL_CODE_PATTERN

# Uppercase letters and digits without the easily confused 0, O, 1, I, L
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"


def is_valid_format(code: object) -> bool:
    """True iff code is exactly 8 uppercase letters/digits."""
    if not isinstance(code, str):
        return False
    return REFERRAL_CODE_PATTERN.fullmatch(code) is not None


def generate_code(length: int = REFERRAL_CODE_LENGTH) -> str:
    """Generate a readable referral code candidate.

    Format: ABC23XYZ. Uniqueness is not guaranteed; callers retry on
    conflict with existing codes.
    """
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str) -> str:
    """Strip surrounding whitespace and upper-case user input."""
    return code.strip().upper()
