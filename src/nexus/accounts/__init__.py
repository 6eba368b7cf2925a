"""Accounts: identity, progression and referral linkage."""
