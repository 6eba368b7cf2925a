"""Nexus rewards: accounts, points ledger and referral program."""

__version__ = "0.1.0"
