"""Account store exceptions."""


class AccountError(Exception):
    """Account store error."""
    pass


class AccountNotFoundError(AccountError):
    """Raised when no account matches the lookup."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Account {key} not found")


class AccountConflictError(AccountError):
    """Raised when an update's expected version no longer matches."""

    def __init__(self, account_id: str, expected_version: int):
        self.account_id = account_id
        self.expected_version = expected_version
        super().__init__(
            f"Account {account_id} changed since version {expected_version}"
        )


class DuplicateWalletError(AccountError):
    """Raised when a wallet address already has an account."""

    def __init__(self, wallet_address: str):
        self.wallet_address = wallet_address
        super().__init__(f"Wallet {wallet_address} already has an account")
