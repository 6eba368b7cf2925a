"""Rate limiting for the rewards API."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from nexus.settings import settings


def wallet_or_remote_address(request: Request) -> str:
    """Limit per connected wallet; anonymous calls are limited per IP."""
    wallet = request.headers.get("X-Wallet-Address")
    if wallet:
        return f"wallet:{wallet}"
    return f"ip:{get_remote_address(request)}"


# Shared instance, only enforced in production
limiter = Limiter(
    key_func=wallet_or_remote_address,
    default_limits=["200/minute"],
    storage_uri="memory://",
    enabled=settings.env == "production",
)
