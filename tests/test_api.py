"""
Tests for the HTTP API.
"""
import pytest
from fastapi.testclient import TestClient

from nexus.api.deps import get_database
from nexus.api.main import app


@pytest.fixture
def client(database):
    """API client bound to the test database"""
    app.dependency_overrides[get_database] = lambda: database
    yield TestClient(app)
    app.dependency_overrides.clear()


def wallet(address):
    return {"X-Wallet-Address": address}


class TestAccountsApi:
    """Tests for /api/v1/accounts"""

    def test_create_account(self, client):
        response = client.post("/api/v1/accounts", json={"wallet_address": "GAPI1", "display_name": "Frank"})

        assert response.status_code == 201
        data = response.json()
        assert data["wallet_address"] == "GAPI1"
        assert data["level"] == 1
        assert data["referral_status"] == "pending"
        assert len(data["referral_code"]) == 8

    def test_create_with_referral_link(self, client, alice):
        response = client.post("/api/v1/accounts", json={"wallet_address": "GAPI2", "referral_code": "aaaa1111"})

        assert response.status_code == 201
        data = response.json()
        assert data["referred_by"] == alice.wallet_address
        assert data["total_points"] == 50

    def test_duplicate_wallet(self, client):
        client.post("/api/v1/accounts", json={"wallet_address": "GAPI3"})
        response = client.post("/api/v1/accounts", json={"wallet_address": "GAPI3"})

        assert response.status_code == 409

    def test_me_requires_wallet(self, client):
        assert client.get("/api/v1/accounts/me").status_code == 401
        assert client.get("/api/v1/accounts/me", headers=wallet("GUNKNOWN")).status_code == 404

    def test_update_display_name(self, client, bob):
        response = client.patch("/api/v1/accounts/me", json={"display_name": "Robert"}, headers=wallet(bob.wallet_address))

        assert response.status_code == 200
        assert response.json()["display_name"] == "Robert"

    def test_get_by_wallet(self, client, alice):
        assert client.get(f"/api/v1/accounts/{alice.wallet_address}").json()["id"] == alice.id
        assert client.get("/api/v1/accounts/GNOBODY").status_code == 404


class TestReferralApi:
    """Tests for /api/v1/referral"""

    def test_apply_code(self, client, alice, bob):
        response = client.post("/api/v1/referral/apply", json={"code": "AAAA1111"}, headers=wallet(bob.wallet_address))

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "bonusEarned": 50,
            "referrerName": "Alice",
            "referralCode": "AAAA1111",
            "message": "Referral applied! You won 50 pts thanks to Alice.",
        }

    def test_double_submit_is_not_an_error(self, client, alice, bob):
        client.post("/api/v1/referral/apply", json={"code": "AAAA1111"}, headers=wallet(bob.wallet_address))
        response = client.post("/api/v1/referral/apply", json={"code": "AAAA1111"}, headers=wallet(bob.wallet_address))

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["errorKind"] == "already_referred"

    @pytest.mark.parametrize(
        "code,status_code,error_kind",
        [
            ("short!", 400, "invalid_format"),
            ("ZZZZ9999", 404, "code_not_found"),
        ],
    )
    def test_apply_errors(self, client, alice, bob, code, status_code, error_kind):
        response = client.post("/api/v1/referral/apply", json={"code": code}, headers=wallet(bob.wallet_address))

        assert response.status_code == status_code
        assert response.json()["errorKind"] == error_kind

    def test_self_referral(self, client, alice):
        response = client.post("/api/v1/referral/apply", json={"code": "AAAA1111"}, headers=wallet(alice.wallet_address))

        assert response.status_code == 400
        assert response.json()["errorKind"] == "self_referral"

    def test_validate(self, client, alice):
        valid = client.post("/api/v1/referral/validate", json={"code": "aaaa1111"}).json()
        invalid = client.post("/api/v1/referral/validate", json={"code": "ZZZZ9999"}).json()

        assert valid["valid"] is True
        assert valid["referrer_name"] == "Alice"
        assert valid["bonus_points"] == 50
        assert invalid["valid"] is False

    def test_summary_and_referred(self, client, alice, bob):
        client.post("/api/v1/referral/apply", json={"code": "AAAA1111"}, headers=wallet(bob.wallet_address))

        summary = client.get("/api/v1/referral/summary", headers=wallet(alice.wallet_address)).json()
        referred = client.get("/api/v1/referral/referred", headers=wallet(alice.wallet_address)).json()

        assert summary["referrals_count"] == 1
        assert summary["total_referral_points"] == 50
        assert [r["wallet_address"] for r in referred] == [bob.wallet_address]

    def test_invitations(self, client, alice, bob):
        created = client.post(
            "/api/v1/referral/invitations",
            json={"email": "friend@example.com"},
            headers=wallet(alice.wallet_address),
        )
        assert created.status_code == 201

        client.post("/api/v1/referral/apply", json={"code": "AAAA1111"}, headers=wallet(bob.wallet_address))

        activated = client.get(
            "/api/v1/referral/invitations",
            params={"status": "activated"},
            headers=wallet(alice.wallet_address),
        ).json()
        pending = client.get(
            "/api/v1/referral/invitations",
            params={"status": "pending"},
            headers=wallet(alice.wallet_address),
        ).json()

        assert [i["invited_email"] for i in activated] == ["friend@example.com"]
        assert pending == []

    def test_invalid_email(self, client, alice):
        response = client.post(
            "/api/v1/referral/invitations",
            json={"email": "not-an-email"},
            headers=wallet(alice.wallet_address),
        )

        assert response.status_code == 422

    def test_recompute_stats(self, client, accounts, alice):
        accounts.update_account(alice.id, {"referrals_count": 4})

        response = client.post("/api/v1/referral/stats/recompute", headers=wallet(alice.wallet_address))

        assert response.json() == {"referrals_count": 0, "total_referral_points": 0}


class TestLedgerApi:
    """Tests for /api/v1/ledger"""

    def test_history_and_audit(self, client, alice, bob):
        client.post("/api/v1/referral/apply", json={"code": "AAAA1111"}, headers=wallet(bob.wallet_address))

        history = client.get("/api/v1/ledger/history", headers=wallet(bob.wallet_address)).json()
        audit = client.get("/api/v1/ledger/audit", headers=wallet(bob.wallet_address)).json()

        assert [tx["reason"] for tx in history] == ["referral_referred_bonus"]
        assert audit["consistent"] is True
        assert audit["ledger_total"] == 50


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"
