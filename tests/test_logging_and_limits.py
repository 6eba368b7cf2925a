"""
Tests for logging context and rate-limit keys.
"""
from starlette.requests import Request

from nexus.api.rate_limit import wallet_or_remote_address
from nexus.logging_config import add_app_context
from nexus.settings import settings


def make_request(headers=None, client=("203.0.113.7", 5000)):
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/v1/referral/apply",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestRateLimitKey:
    """Tests for wallet_or_remote_address"""

    def test_wallet_header_used(self):
        request = make_request({"X-Wallet-Address": "GWALLET1"})

        assert wallet_or_remote_address(request) == "wallet:GWALLET1"

    def test_falls_back_to_ip(self):
        assert wallet_or_remote_address(make_request()) == "ip:203.0.113.7"


class TestAppContext:
    """Tests for add_app_context"""

    def test_tags_event(self):
        event = add_app_context(None, "info", {"event": "referral_applied"})

        assert event["app"] == settings.app_name
        assert event["env"] == settings.env

    def test_keeps_explicit_values(self):
        event = add_app_context(None, "info", {"event": "x", "env": "staging"})

        assert event["env"] == "staging"
