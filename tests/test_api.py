"""Tests for the viewer-side HTTP client against the real application."""

from unittest.mock import Mock, patch

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer

from gallery.client.api import ApiError, GalleryClient
from gallery.db.models import IntentMode
from gallery.payments.server import create_app


@pytest_asyncio.fixture
async def gallery(db):
    server = TestServer(create_app())
    await server.start_server()
    async with GalleryClient(str(server.make_url(""))) as client:
        yield client
    await server.close()


@pytest.mark.asyncio
async def test_create_redirect_intent(gallery, db):
    db.add_content_item("A", 199)
    session = Mock()
    session.id = "cs_1"
    session.url = "https://checkout.stripe.com/c/pay/cs_1"

    with patch("gallery.payments.intents.stripe.checkout.Session.create", return_value=session):
        body = await gallery.create_intent(IntentMode.SINGLE_REDIRECT, 199, content_item_id="A")

    assert body == {"sessionId": "cs_1", "checkoutUrl": "https://checkout.stripe.com/c/pay/cs_1"}


@pytest.mark.asyncio
async def test_error_body_becomes_api_error(gallery, db):
    db.add_content_item("A", 199)

    with pytest.raises(ApiError) as exc_info:
        await gallery.create_intent(IntentMode.SINGLE_EMBEDDED, 99, content_item_id="A")

    assert exc_info.value.status == 400
    assert "Price mismatch" in exc_info.value.message


@pytest.mark.asyncio
async def test_fetch_entitlements(gallery, db):
    db.lifetime_grants.append({"purchaser_id": "u1", "payment_reference": "pi_l", "status": "completed"})

    entitlements = await gallery.fetch_entitlements("u1")

    assert entitlements.lifetime
    assert entitlements.content_item_ids == frozenset()


@pytest.mark.asyncio
async def test_fetch_client_config(gallery):
    config = await gallery.fetch_client_config()

    assert config.publishable_key == "pk_test_123"
    assert config.lifetime_price == 4900
    assert config.upsell_delay_ms == 5000


@pytest.mark.asyncio
async def test_requires_context_manager():
    client = GalleryClient("http://localhost")

    with pytest.raises(RuntimeError):
        await client.fetch_client_config()
