"""Points ledger exceptions."""


class LedgerError(Exception):
    """Points ledger error."""
    pass


class InvalidTransactionError(LedgerError):
    """Raised for a transaction that can never be recorded."""
    pass


class InsufficientPointsError(LedgerError):
    """Raised when a deduction exceeds the account balance."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient points: required {required}, available {available}")


class DuplicateTransactionError(LedgerError):
    """Raised when a (reason, source_key) pair was already recorded."""

    def __init__(self, reason: str, source_key: str):
        self.reason = reason
        self.source_key = source_key
        super().__init__(f"Transaction {reason} for {source_key} already recorded")
