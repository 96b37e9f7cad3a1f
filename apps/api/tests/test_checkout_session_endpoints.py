import pytest
from httpx import ASGITransport, AsyncClient

from giftbridge_api.core.settings import settings

AMAZON_URL = "https://www.amazon.com/gp/cart/view.html"


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _create(client: AsyncClient, **overrides) -> dict:
    payload = {"amazonUrl": AMAZON_URL, "cartTotalCents": 1811, "currentBalanceCents": 500}
    payload.update(overrides)
    response = await client.post("/api/v1/checkout-sessions", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_and_fetch_session(app_with_db):
    app, _ = app_with_db

    async with _client(app) as client:
        created = await _create(client, userId="user-1", metadata='{"tab": 3}')
        fetched = await client.get(f"/api/v1/checkout-sessions/{created['sessionId']}")

    assert created["topUpAmountCents"] == 1311
    assert created["status"] == "CREATED"
    assert created["metadata"] == {"tab": 3}
    assert fetched.status_code == 200
    assert fetched.json()["sessionId"] == created["sessionId"]


@pytest.mark.asyncio
async def test_create_session_rejects_invalid_fields(app_with_db):
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/checkout-sessions",
            json={"amazonUrl": "https://example.com/cart", "cartTotalCents": 0, "currentBalanceCents": 0},
        )

    assert response.status_code == 400
    fields = {item["field"] for item in response.json()["detail"]["errors"]}
    assert fields == {"amazonUrl", "cartTotalCents"}


@pytest.mark.asyncio
async def test_create_session_reports_type_errors_with_other_fields(app_with_db):
    app, _ = app_with_db

    async with _client(app) as client:
        mistyped = await client.post(
            "/api/v1/checkout-sessions",
            json={"amazonUrl": "ftp://evil.example.com", "cartTotalCents": "abc", "currentBalanceCents": -5},
        )
        missing = await client.post("/api/v1/checkout-sessions", json={"cartTotalCents": 1000})

    assert mistyped.status_code == 400
    errors = {item["field"]: item["message"] for item in mistyped.json()["detail"]["errors"]}
    assert set(errors) == {"amazonUrl", "cartTotalCents", "currentBalanceCents"}
    assert "whole number" in errors["cartTotalCents"]

    assert missing.status_code == 400
    fields = {item["field"] for item in missing.json()["detail"]["errors"]}
    assert fields == {"amazonUrl", "currentBalanceCents"}


@pytest.mark.asyncio
async def test_session_lookup_errors(app_with_db):
    app, _ = app_with_db

    async with _client(app) as client:
        missing = await client.get("/api/v1/checkout-sessions/session-0000")
        malformed = await client.get("/api/v1/checkout-sessions/not_a_session")

    assert missing.status_code == 404
    assert missing.json()["detail"] == {"error": "Session not found"}
    assert malformed.status_code == 400


@pytest.mark.asyncio
async def test_status_update_follows_transition_graph(app_with_db):
    app, _ = app_with_db

    async with _client(app) as client:
        created = await _create(client)
        path = f"/api/v1/checkout-sessions/{created['sessionId']}/status"
        skipped = await client.put(path, json={"status": "COMPLETED"})
        pending = await client.put(path, json={"status": "PENDING", "metadata": {"step": "wallet"}})
        listed = await client.get("/api/v1/checkout-sessions", params={"status": "PENDING"})
        missing_filter = await client.get("/api/v1/checkout-sessions")

    assert skipped.status_code == 409
    assert skipped.json()["detail"]["reason"] == "invalid_transition"
    assert pending.status_code == 200
    assert pending.json()["metadata"] == {"step": "wallet"}
    assert [item["sessionId"] for item in listed.json()] == [created["sessionId"]]
    assert missing_filter.status_code == 400


@pytest.mark.asyncio
async def test_statistics_and_sweep(app_with_db):
    app, _ = app_with_db

    async with _client(app) as client:
        await _create(client)
        await _create(client, cartTotalCents=500, currentBalanceCents=900)
        stats = await client.get("/api/v1/checkout-sessions/statistics")
        sweep = await client.post("/api/v1/checkout-sessions/sweep-expired")

    payload = stats.json()
    assert payload["totalSessions"] == 2
    assert payload["statusCounts"]["CREATED"] == 2
    assert payload["totalTopUpCents"] == 1311
    assert payload["averageTopUpCents"] == 656
    assert sweep.json() == {"expired": 0}


@pytest.mark.asyncio
async def test_payment_webhook_allocates_gift_codes(app_with_db, seed_codes):
    app, session_factory = app_with_db
    await seed_codes(session_factory, [500, 1000, 2500])

    async with _client(app) as client:
        created = await _create(client, cartTotalCents=2000, currentBalanceCents=500)
        confirmed = await client.post(
            "/api/v1/webhooks/payment-confirmed",
            json={"sessionId": created["sessionId"], "transactionHash": "0xabc", "amount": 1500},
        )
        replayed = await client.post(
            "/api/v1/webhooks/payment-confirmed",
            json={"sessionId": created["sessionId"], "transactionHash": "0xabc"},
        )
        session_view = await client.get(f"/api/v1/checkout-sessions/{created['sessionId']}")

    assert confirmed.status_code == 200
    body = confirmed.json()
    assert body["success"] is True
    assert body["status"] == "PROCESSING"
    assert body["allocatedAmount"] == 1500
    assert body["remainingAmount"] == 0
    assert sorted(code["denomination"] for code in body["allocatedCodes"]) == [500, 1000]
    assert body["replayed"] is False

    assert replayed.status_code == 200
    assert replayed.json()["replayed"] is True
    assert {code["id"] for code in replayed.json()["allocatedCodes"]} == {
        code["id"] for code in body["allocatedCodes"]
    }
    assert session_view.json()["metadata"]["transactionHash"] == "0xabc"


@pytest.mark.asyncio
async def test_payment_webhook_maps_failures(app_with_db):
    app, _ = app_with_db

    async with _client(app) as client:
        created = await _create(client)
        exhausted = await client.post(
            "/api/v1/webhooks/payment-confirmed",
            json={"sessionId": created["sessionId"], "transactionHash": "0xabc"},
        )
        unknown = await client.post(
            "/api/v1/webhooks/payment-confirmed",
            json={"sessionId": "session-ffff", "transactionHash": "0xabc"},
        )
        incomplete = await client.post("/api/v1/webhooks/payment-confirmed", json={"sessionId": "session-ffff"})

    assert exhausted.status_code == 422
    assert exhausted.json()["detail"]["reason"] == "inventory_exhausted"
    assert exhausted.json()["detail"]["error"].startswith("Failed to allocate gift codes")
    assert unknown.status_code == 404
    assert incomplete.status_code == 400


@pytest.mark.asyncio
async def test_checkout_key_is_enforced_when_configured(app_with_db, monkeypatch):
    app, _ = app_with_db
    monkeypatch.setattr(settings, "checkout_api_key", "checkout-secret")

    async with _client(app) as client:
        rejected = await client.get("/api/v1/checkout-sessions/statistics")
        accepted = await client.get(
            "/api/v1/checkout-sessions/statistics",
            headers={"X-API-Key": "checkout-secret"},
        )
        webhook = await client.post(
            "/api/v1/webhooks/payment-confirmed",
            json={"sessionId": "session-ffff", "transactionHash": "0xabc"},
        )

    assert rejected.status_code == 401
    assert accepted.status_code == 200
    assert webhook.status_code == 401


@pytest.mark.asyncio
async def test_readiness_reports_database_and_sweep_worker(app_with_db):
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.get("/api/v1/readyz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    assert payload["components"]["database"]["status"] == "ready"
    assert payload["components"]["expiry_sweep"]["status"] == "disabled"
