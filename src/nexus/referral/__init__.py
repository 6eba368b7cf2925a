"""Referral program.

- Every account owns one 8-character referral code
- Redeeming a code credits both sides 50 points / 500 XP, once per account
- Referrer counters are a cache of the ledger and can be recomputed
"""
