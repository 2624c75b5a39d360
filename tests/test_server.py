"""End-to-end tests of the HTTP endpoints."""

import json
from unittest.mock import Mock, patch

import pytest
import pytest_asyncio
import stripe
from aiohttp.test_utils import TestClient, TestServer

from gallery.payments.server import create_app

from tests.stripe_events import checkout_completed, sign


@pytest_asyncio.fixture
async def client():
    async with TestClient(TestServer(create_app())) as test_client:
        yield test_client


def _intent():
    intent = Mock()
    intent.id = "pi_A_1"
    intent.client_secret = "pi_A_1_secret_abc"
    return intent


class TestRoutes:
    def test_routes_registered(self):
        app = create_app()
        routes = {
            (r.method, r.resource.canonical)
            for r in app.router.routes()
            if r.method != "HEAD"
        }

        assert ("POST", "/create-payment-intent") in routes
        assert ("POST", "/stripe-webhook") in routes
        assert ("GET", "/entitlements") in routes
        assert ("GET", "/client-config") in routes


class TestCreatePaymentIntent:
    @pytest.mark.asyncio
    async def test_purchase_scenario(self, client, db):
        """Item A at 199: intent created, webhook twice records once, bad price rejected."""
        db.add_content_item("A", 199, title="Sunset")

        with patch("gallery.payments.intents.stripe.PaymentIntent.create") as mock_create:
            mock_create.return_value = _intent()
            response = await client.post(
                "/create-payment-intent",
                json={"contentItemId": "A", "price": 199, "type": "single_embedded"},
            )
            assert response.status == 200
            data = await response.json()
            assert data["clientSecret"] == "pi_A_1_secret_abc"

            payload = json.dumps(
                checkout_completed({"type": "single", "contentItemId": "A"})
            ).encode()
            for _ in range(2):
                hook = await client.post(
                    "/stripe-webhook",
                    data=payload,
                    headers={"Stripe-Signature": sign(payload)},
                )
                assert hook.status == 200
                assert await hook.json() == {"received": True}

            assert len(db.purchase_records) == 1
            assert db.purchase_records[0]["content_item_id"] == "A"
            assert db.purchase_records[0]["status"] == "completed"

            rejected = await client.post(
                "/create-payment-intent",
                json={"contentItemId": "A", "price": 99, "type": "single_embedded"},
            )
            assert rejected.status == 400
            assert "Price mismatch" in (await rejected.json())["error"]
            assert mock_create.call_count == 1

    @pytest.mark.asyncio
    async def test_missing_item(self, client, db):
        response = await client.post(
            "/create-payment-intent",
            json={"contentItemId": "nope", "price": 199, "type": "single_redirect"},
        )

        assert response.status == 400
        assert "not found" in (await response.json())["error"]

    @pytest.mark.asyncio
    async def test_provider_failure_is_bad_gateway(self, client, db):
        db.add_content_item("A", 199)

        with patch("gallery.payments.intents.stripe.PaymentIntent.create") as mock_create:
            mock_create.side_effect = stripe.APIConnectionError("network down")
            response = await client.post(
                "/create-payment-intent",
                json={"contentItemId": "A", "price": 199, "type": "single_embedded"},
            )

        assert response.status == 502
        assert "error" in await response.json()

    @pytest.mark.asyncio
    async def test_catalog_failure_is_server_error(self, client, db, monkeypatch):
        async def broken_fetchrow(sql, *args):
            raise OSError("connection reset")

        monkeypatch.setattr(db, "fetchrow", broken_fetchrow)

        response = await client.post(
            "/create-payment-intent",
            json={"contentItemId": "A", "price": 199, "type": "single_embedded"},
        )

        assert response.status == 500
        assert await response.json() == {"error": "Content item lookup failed"}

    @pytest.mark.asyncio
    async def test_malformed_json(self, client):
        response = await client.post(
            "/create-payment-intent",
            data=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status == 400
        assert await response.json() == {"error": "Request body must be valid JSON"}

    @pytest.mark.asyncio
    async def test_cors_headers(self, client):
        preflight = await client.options("/create-payment-intent")
        assert preflight.status == 200
        assert preflight.headers["Access-Control-Allow-Origin"] == "*"

        response = await client.post("/create-payment-intent", json={})
        assert response.headers["Access-Control-Allow-Origin"] == "*"


class TestWebhookEndpoint:
    @pytest.mark.asyncio
    async def test_requires_signature(self, client, db):
        response = await client.post("/stripe-webhook", data=b"{}")

        assert response.status == 400
        assert await response.json() == {"error": "Missing signature"}
        assert db.statements == []


class TestEntitlements:
    @pytest.mark.asyncio
    async def test_entitlements_reflect_ledger(self, client, db):
        db.purchase_records.append(
            {"purchaser_id": "u1", "content_item_id": "A", "status": "completed", "payment_reference": "pi_1"}
        )

        response = await client.get("/entitlements", params={"userId": "u1"})

        assert response.status == 200
        assert await response.json() == {"lifetime": False, "contentItemIds": ["A"]}

    @pytest.mark.asyncio
    async def test_requires_user(self, client):
        response = await client.get("/entitlements")

        assert response.status == 400


class TestClientConfig:
    @pytest.mark.asyncio
    async def test_exposes_only_public_settings(self, client):
        response = await client.get("/client-config")
        data = await response.json()

        assert data == {
            "publishableKey": "pk_test_123",
            "currency": "gbp",
            "lifetimePrice": 4900,
            "upsellDelayMs": 5000,
        }
