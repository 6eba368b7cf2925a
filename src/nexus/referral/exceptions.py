"""Referral application errors."""

from enum import Enum


class ReferralErrorKind(str, Enum):
    """Closed set of ways a referral application can end without a credit."""
    INVALID_FORMAT = "invalid_format"
    CODE_NOT_FOUND = "code_not_found"
    SELF_REFERRAL = "self_referral"
    ALREADY_REFERRED = "already_referred"
    ACCOUNT_NOT_FOUND = "account_not_found"
    REFERRER_UNAVAILABLE = "referrer_unavailable"
    TRANSIENT_FAILURE = "transient_failure"


class ReferralError(Exception):
    """Base class for referral application failures."""

    kind: ReferralErrorKind
    default_message = "Referral code could not be applied."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidFormatError(ReferralError):
    kind = ReferralErrorKind.INVALID_FORMAT
    default_message = "Referral codes are 8 uppercase letters or digits."


class CodeNotFoundError(ReferralError):
    kind = ReferralErrorKind.CODE_NOT_FOUND
    default_message = "This referral code does not exist."


class SelfReferralError(ReferralError):
    kind = ReferralErrorKind.SELF_REFERRAL
    default_message = "You cannot use your own referral code."


class AlreadyReferredError(ReferralError):
    kind = ReferralErrorKind.ALREADY_REFERRED
    default_message = "A referral code has already been applied to this account."


class ReferralAccountNotFoundError(ReferralError):
    kind = ReferralErrorKind.ACCOUNT_NOT_FOUND
    default_message = "Account not found. Connect your wallet first."


class ReferrerUnavailableError(ReferralError):
    kind = ReferralErrorKind.REFERRER_UNAVAILABLE
    default_message = "The owner of this referral code is no longer available."


class TransientFailureError(ReferralError):
    kind = ReferralErrorKind.TRANSIENT_FAILURE
    default_message = "The referral could not be applied right now. Please try again."
