"""Security tests: auth bypass, IDOR, header limits."""
import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

# conftest.py already sets ALLOW_INSECURE_DEV_AUTH=true and imports the app.
# Patch settings directly; env changes after import have no effect.
from coinledger.config import settings
from coinledger.limiter import rate_limit_key
from coinledger.main import app


@pytest.fixture()
def secure_client():
    """TestClient with insecure dev auth disabled and a known gateway key."""
    original = (settings.allow_insecure_dev_auth, settings.internal_api_key)
    settings.allow_insecure_dev_auth = False
    settings.internal_api_key = "gateway-secret"
    try:
        with TestClient(app) as c:
            yield c
    finally:
        settings.allow_insecure_dev_auth, settings.internal_api_key = original


class TestAuthBypass:
    def test_raw_user_header_is_rejected(self, secure_client):
        """Without dev auth, X-User-ID alone must not authenticate."""
        resp = secure_client.get("/v1/wallet/balance", headers={"X-User-ID": "u1"})
        assert resp.status_code == 401

    def test_wrong_gateway_key_is_rejected(self, secure_client):
        resp = secure_client.get(
            "/v1/wallet/balance",
            headers={"X-User-ID": "u1", "X-Internal-API-Key": "guess"},
        )
        assert resp.status_code == 401

    def test_gateway_key_without_user_is_rejected(self, secure_client):
        resp = secure_client.get("/v1/wallet/balance", headers={"X-Internal-API-Key": "gateway-secret"})
        assert resp.status_code == 401

    def test_gateway_key_with_user_is_accepted(self, secure_client):
        resp = secure_client.get(
            "/v1/wallet/balance",
            headers={"X-User-ID": "u1", "X-Internal-API-Key": "gateway-secret"},
        )
        assert resp.status_code == 200
        assert resp.json() == {"user_id": "u1", "balance": 0, "held_amount": 0}

    def test_user_header_does_not_open_admin_routes(self, secure_client):
        """Admin routes read X-Admin-ID, never X-User-ID."""
        resp = secure_client.get(
            "/v1/admin/settings",
            headers={"X-User-ID": "admin-1", "X-Internal-API-Key": "gateway-secret"},
        )
        assert resp.status_code == 401

    def test_health_endpoint_is_public(self, secure_client):
        resp = secure_client.get("/health")
        assert resp.status_code == 200

    def test_catalog_reads_are_public(self, secure_client):
        assert secure_client.get("/v1/coins/plans").status_code == 200
        assert secure_client.get("/v1/gifts").status_code == 200


class TestRecipientTier:
    """Behind the gateway the price tier comes from the gateway, not the sender."""

    GATEWAY = {"X-User-ID": "sender", "X-Internal-API-Key": "gateway-secret"}

    def test_gateway_tier_header_overrides_body(self, secure_client, fund):
        fund("sender", 100)

        resp = secure_client.post(
            "/v1/messages/chat-1/send",
            headers={**self.GATEWAY, "X-Recipient-Tier": "gold"},
            json={"recipient_id": "host", "recipient_tier": "basic", "message_id": "m-1"},
        )

        assert resp.status_code == 200, resp.text
        assert resp.json()["debit"]["amount_coins"] == 40

    def test_gateway_call_without_tier_header_is_rejected(self, secure_client, fund):
        fund("sender", 100)

        resp = secure_client.post(
            "/v1/messages/chat-1/send",
            headers=self.GATEWAY,
            json={"recipient_id": "host", "recipient_tier": "basic", "message_id": "m-1"},
        )

        assert resp.status_code == 422
        assert resp.json()["code"] == "VALIDATION_ERROR"
        balance = secure_client.get("/v1/wallet/balance", headers=self.GATEWAY).json()
        assert balance["balance"] == 100


class TestHeaderLimits:
    def test_overlong_user_id_is_rejected(self, client):
        resp = client.get("/v1/wallet/balance", headers={"X-User-ID": "x" * 65})
        assert resp.status_code == 400

    def test_missing_user_id_is_rejected(self, client):
        resp = client.get("/v1/wallet/balance")
        assert resp.status_code == 401


class TestIDOR:
    """Users only see and touch their own withdrawals."""

    def test_users_cannot_read_or_cancel_each_others_withdrawals(self, client, default_slabs, fund):
        fund("owner", 2000)
        created = client.post(
            "/v1/withdrawals",
            headers={"X-User-ID": "owner"},
            json={"coins_requested": 1000, "payout_method": "UPI", "payout_details": {"upi_id": "owner@okicici"}},
        )
        assert created.status_code == 200
        request_id = created.json()["id"]

        peek = client.get(f"/v1/withdrawals/{request_id}", headers={"X-User-ID": "intruder"})
        assert peek.status_code == 404

        cancel = client.patch(f"/v1/withdrawals/{request_id}/cancel", headers={"X-User-ID": "intruder"})
        assert cancel.status_code == 404

        listing = client.get("/v1/withdrawals", headers={"X-User-ID": "intruder"})
        assert listing.json()["total"] == 0

        own = client.get(f"/v1/withdrawals/{request_id}", headers={"X-User-ID": "owner"})
        assert own.status_code == 200
        assert own.json()["status"] == "pending"


def _request(headers: dict[str, str]) -> Request:
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/v1/wallet/balance",
            "headers": [(name.lower().encode(), value.encode()) for name, value in headers.items()],
            "client": ("203.0.113.7", 51000),
        }
    )


class TestRateLimitKey:
    @pytest.fixture(autouse=True)
    def gateway_key(self, monkeypatch):
        monkeypatch.setattr(settings, "internal_api_key", "gateway-secret")

    def test_unauthenticated_user_header_falls_back_to_address(self):
        assert rate_limit_key(_request({"X-User-ID": "u1"})) == "203.0.113.7"
        assert rate_limit_key(_request({"X-User-ID": "u2"})) == "203.0.113.7"

    def test_wrong_gateway_key_falls_back_to_address(self):
        key = rate_limit_key(_request({"X-User-ID": "u1", "X-Internal-API-Key": "guess"}))
        assert key == "203.0.113.7"

    def test_gateway_traffic_is_keyed_per_actor(self):
        user = rate_limit_key(_request({"X-User-ID": "u1", "X-Internal-API-Key": "gateway-secret"}))
        admin = rate_limit_key(_request({"X-Admin-ID": "a1", "X-Internal-API-Key": "gateway-secret"}))
        assert user == "actor:u1"
        assert admin == "actor:a1"
