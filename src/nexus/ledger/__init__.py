"""Append-only points ledger."""
