ADMIN = {"X-Admin-ID": "admin-1"}


def _user(user_id: str) -> dict[str, str]:
    return {"X-User-ID": user_id}


def _create_plan(client, **overrides):
    body = {"name": "Starter", "tier": "basic", "price_in_inr": 99, "base_coins": 100, "bonus_coins": 10}
    body.update(overrides)
    resp = client.post("/v1/admin/coin-economy/plans", headers=ADMIN, json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_plan_catalog_and_purchase_flow(client):
    plan = _create_plan(client, badge="POPULAR")
    assert plan["total_coins"] == 110
    assert plan["bonus_percentage"] == 10.0

    listed = client.get("/v1/coins/plans").json()["items"]
    assert [item["id"] for item in listed] == [plan["id"]]

    body = {"plan_id": plan["id"], "payment_reference": "rzp_123"}
    first = client.post("/v1/coins/purchase", headers=_user("buyer"), json=body)
    again = client.post("/v1/coins/purchase", headers=_user("buyer"), json=body)
    assert first.status_code == 200
    assert first.json()["id"] == again.json()["id"]
    assert first.json()["amount_coins"] == 110

    balance = client.get("/v1/wallet/balance", headers=_user("buyer")).json()
    assert balance == {"user_id": "buyer", "balance": 110, "held_amount": 0}

    stolen = client.post("/v1/coins/purchase", headers=_user("thief"), json=body)
    assert stolen.status_code == 409
    assert stolen.json()["code"] == "DUPLICATE_PAYMENT_REFERENCE"
    assert client.get("/v1/wallet/balance", headers=_user("thief")).json()["balance"] == 0


def test_plan_total_mismatch_is_422(client):
    resp = client.post(
        "/v1/admin/coin-economy/plans",
        headers=ADMIN,
        json={"name": "Odd", "tier": "gold", "price_in_inr": 10, "base_coins": 100, "bonus_coins": 5, "total_coins": 99},
    )
    assert resp.status_code == 422
    assert resp.json()["code"] == "VALIDATION_ERROR"


def test_message_charge_and_error_rendering(client, fund):
    fund("sender", 60)

    ok = client.post(
        "/v1/messages/chat-1/send",
        headers=_user("sender"),
        json={"recipient_id": "host", "recipient_tier": "basic", "message_id": "m-1"},
    )
    assert ok.status_code == 200
    assert ok.json()["debit"]["amount_coins"] == 50
    assert ok.json()["credit"]["user_id"] == "host"

    broke = client.post(
        "/v1/messages/chat-1/send",
        headers={**_user("sender"), "X-Request-ID": "req-42"},
        json={"recipient_id": "host", "recipient_tier": "basic", "message_id": "m-2"},
    )
    assert broke.status_code == 402
    payload = broke.json()
    assert payload["code"] == "INSUFFICIENT_BALANCE"
    assert payload["details"] == {"balance": 10, "required": 50}
    assert payload["request_id"] == "req-42"
    assert broke.headers["X-Request-ID"] == "req-42"


def test_video_call_charge(client, fund):
    fund("caller", 600)

    resp = client.post("/v1/calls/call-1/charge", headers=_user("caller"), json={"recipient_id": "host"})

    assert resp.status_code == 200
    assert resp.json()["credit"]["type"] == "video_call_earned"
    assert client.get("/v1/wallet/balance", headers=_user("host")).json()["balance"] == 500


def test_gift_send_receive_and_trade(client, fund):
    gift = client.post(
        "/v1/admin/coin-economy/gifts",
        headers=ADMIN,
        json={"name": "Teddy", "category": "special", "cost": 200, "trade_value": 120},
    ).json()
    fund("fan", 500)

    sent = client.post(f"/v1/gifts/{gift['id']}/send", headers=_user("fan"), json={"recipient_id": "host"})
    assert sent.status_code == 200
    assert sent.json()["received"]["status"] == "pending"

    received = client.get("/v1/gifts/received", headers=_user("host")).json()
    assert received["total_value"] == 120

    traded = client.post(
        "/v1/gifts/trade",
        headers=_user("host"),
        json={"transaction_ids": [received["items"][0]["id"]]},
    )
    assert traded.status_code == 200
    assert traded.json()["coins_credited"] == 120
    assert traded.json()["balance"] == 120

    earnings = client.get("/v1/wallet/earnings", headers=_user("host")).json()
    assert earnings["by_type"]["gift_received"] == 120
    assert earnings["pending_gift_count"] == 0


def test_unknown_gift_is_404(client, fund):
    fund("fan", 500)
    resp = client.post(
        "/v1/gifts/00000000-0000-0000-0000-000000000000/send",
        headers=_user("fan"),
        json={"recipient_id": "host"},
    )
    assert resp.status_code == 404
    assert resp.json()["code"] == "UNKNOWN_GIFT"


def test_withdrawal_review_flow(client, default_slabs, fund):
    fund("host", 3000)
    created = client.post(
        "/v1/withdrawals",
        headers=_user("host"),
        json={
            "coins_requested": 2000,
            "payout_method": "bank",
            "payout_details": {
                "account_holder_name": "Host Name",
                "account_number": "001234567890",
                "ifsc_code": "sbin0001234",
            },
        },
    )
    assert created.status_code == 200, created.text
    request = created.json()
    assert request["payout_percentage"] == 60
    assert request["payout_amount_inr"] == 1200
    assert request["payout_details"]["ifsc_code"] == "SBIN0001234"

    pending = client.get("/v1/admin/withdrawals", headers=ADMIN, params={"status": "pending"}).json()
    assert pending["total"] == 1

    approved = client.patch(f"/v1/admin/withdrawals/{request['id']}/approve", headers=ADMIN)
    assert approved.json()["status"] == "approved"

    paid = client.patch(
        f"/v1/admin/withdrawals/{request['id']}/paid",
        headers=ADMIN,
        json={"payment_reference": "UTR-1"},
    )
    assert paid.status_code == 200
    assert paid.json()["status"] == "paid"
    assert paid.json()["transaction_id"] is not None

    again = client.patch(f"/v1/admin/withdrawals/{request['id']}/approve", headers=ADMIN)
    assert again.status_code == 409
    assert again.json()["code"] == "INVALID_TRANSITION"

    balance = client.get("/v1/admin/accounts/host", headers=ADMIN).json()
    assert balance == {"user_id": "host", "balance": 1000, "held_amount": 0}

    history = client.get("/v1/wallet/transactions", headers=_user("host"), params={"type": "withdrawal"}).json()
    assert history["total"] == 1
    assert history["items"][0]["amount_inr"] == 1200

    trail = client.get(
        "/v1/admin/audit-logs",
        headers=ADMIN,
        params={"target_type": "withdrawal", "target_id": request["id"]},
    ).json()
    assert sorted(item["action"] for item in trail["items"]) == [
        "withdrawal_approved",
        "withdrawal_paid",
        "withdrawal_requested",
    ]


def test_withdrawal_errors_map_to_statuses(client, fund):
    fund("host", 3000)
    body = {"coins_requested": 1000, "payout_method": "UPI", "payout_details": {"upi_id": "host@okhdfc"}}

    no_slabs = client.post("/v1/withdrawals", headers=_user("host"), json=body)
    assert no_slabs.status_code == 503
    assert no_slabs.json()["code"] == "NO_MATCHING_SLAB"

    too_small = client.post("/v1/withdrawals", headers=_user("host"), json={**body, "coins_requested": 100})
    assert too_small.status_code == 422
    assert too_small.json()["code"] == "BELOW_MINIMUM"

    bad_upi = client.post("/v1/withdrawals", headers=_user("host"), json={**body, "payout_details": {"upi_id": "x"}})
    assert bad_upi.status_code == 422


def test_reject_returns_coins(client, default_slabs, fund):
    fund("host", 1000)
    request_id = client.post(
        "/v1/withdrawals",
        headers=_user("host"),
        json={"coins_requested": 800, "payout_method": "UPI", "payout_details": {"upi_id": "host@okhdfc"}},
    ).json()["id"]
    assert client.get("/v1/wallet/balance", headers=_user("host")).json()["held_amount"] == 800

    rejected = client.patch(
        f"/v1/admin/withdrawals/{request_id}/reject",
        headers=ADMIN,
        json={"reason": "Name mismatch"},
    )

    assert rejected.json()["status"] == "rejected"
    assert rejected.json()["review_notes"] == "Name mismatch"
    assert client.get("/v1/wallet/balance", headers=_user("host")).json() == {
        "user_id": "host",
        "balance": 1000,
        "held_amount": 0,
    }


def test_slab_admin_endpoints(client, default_slabs):
    listed = client.get("/v1/admin/coin-economy/slabs", headers=ADMIN).json()["items"]
    assert len(listed) == 3

    overlap = client.post(
        "/v1/admin/coin-economy/slabs",
        headers=ADMIN,
        json={"min_coins": 100, "max_coins": 200, "payout_percentage": 55},
    )
    assert overlap.status_code == 409
    assert overlap.json()["code"] == "OVERLAPPING_SLABS"

    replaced = client.put(
        "/v1/admin/coin-economy/slabs",
        headers=ADMIN,
        json={"slabs": [{"min_coins": 0, "payout_percentage": 65}]},
    )
    assert replaced.status_code == 200
    assert [(s["min_coins"], s["max_coins"]) for s in replaced.json()["items"]] == [(0, None)]

    gap = client.put(
        "/v1/admin/coin-economy/slabs",
        headers=ADMIN,
        json={"slabs": [{"min_coins": 10, "max_coins": None, "payout_percentage": 65}]},
    )
    assert gap.status_code == 409
    assert gap.json()["code"] == "SLAB_GAP"


def test_null_is_active_or_display_order_is_422(client, default_slabs):
    plan = _create_plan(client)
    gift = client.post(
        "/v1/admin/coin-economy/gifts",
        headers=ADMIN,
        json={"name": "Rose", "category": "romantic", "cost": 100, "trade_value": 60},
    ).json()
    slab_id = client.get("/v1/admin/coin-economy/slabs", headers=ADMIN).json()["items"][0]["id"]

    for path in (
        f"/v1/admin/coin-economy/plans/{plan['id']}",
        f"/v1/admin/coin-economy/gifts/{gift['id']}",
        f"/v1/admin/coin-economy/slabs/{slab_id}",
    ):
        resp = client.patch(path, headers=ADMIN, json={"is_active": None})
        assert resp.status_code == 422, path
        assert resp.json()["code"] == "VALIDATION_ERROR"
        assert resp.json()["details"] == {"is_active": None}

    unordered = client.patch(f"/v1/admin/coin-economy/slabs/{slab_id}", headers=ADMIN, json={"display_order": None})
    assert unordered.status_code == 422
    assert unordered.json()["code"] == "VALIDATION_ERROR"

    assert client.get("/v1/coins/plans").json()["items"][0]["id"] == plan["id"]
    assert len(client.get("/v1/admin/coin-economy/slabs", headers=ADMIN).json()["items"]) == 3


def test_settings_and_adjustments(client):
    current = client.get("/v1/admin/settings", headers=ADMIN).json()
    assert current["message_cost_platinum"] == 35

    updated = client.patch("/v1/admin/settings", headers=ADMIN, json={"message_cost_platinum": 30})
    assert updated.json()["message_cost_platinum"] == 30

    invalid = client.patch("/v1/admin/settings", headers=ADMIN, json={"withdrawal_min_amount": 90000})
    assert invalid.status_code == 422

    credit = client.post(
        "/v1/admin/adjustments",
        headers=ADMIN,
        json={"user_id": "u9", "amount": 75, "direction": "credit", "reason": "support refund"},
    )
    assert credit.status_code == 200
    assert credit.json()["type"] == "adjustment"

    overdraw = client.post(
        "/v1/admin/adjustments",
        headers=ADMIN,
        json={"user_id": "u9", "amount": 100, "direction": "debit", "reason": "chargeback"},
    )
    assert overdraw.status_code == 402

    ledger_view = client.get("/v1/admin/transactions", headers=ADMIN, params={"user_id": "u9"}).json()
    assert ledger_view["total"] == 1


def test_wallet_transactions_paginate(client, fund):
    for _ in range(3):
        fund("u1", 10)

    page = client.get("/v1/wallet/transactions", headers=_user("u1"), params={"limit": 2}).json()
    assert page["total"] == 3
    assert len(page["items"]) == 2
    assert page["limit"] == 2
