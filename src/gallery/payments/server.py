"""HTTP server for intent creation, entitlements and the Stripe webhook."""

import asyncio
import json
import logging
import signal
from typing import Optional

from aiohttp import web

from gallery.config.settings import get_config
from gallery.payments.errors import InvalidInput, PaymentError
from gallery.payments.intents import create_intent, parse_intent_request
from gallery.payments.ledger import fetch_entitlements
from gallery.payments.webhooks import handle_webhook

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}


def error_response(error: PaymentError) -> web.Response:
    return web.json_response({"error": error.message}, status=error.status)


@web.middleware
async def cors_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Answer preflight requests and add CORS headers to browser-facing routes."""
    if request.method == "OPTIONS":
        return web.Response(text="ok", headers=CORS_HEADERS)

    response = await handler(request)
    if request.path != "/stripe-webhook":
        response.headers.update(CORS_HEADERS)
    return response


async def create_intent_endpoint(request: web.Request) -> web.Response:
    """Handle POST /create-payment-intent."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return error_response(InvalidInput("Request body must be valid JSON"))

    try:
        intent_request = parse_intent_request(body)
        handle = await create_intent(intent_request, origin=request.headers.get("Origin"))
    except PaymentError as e:
        logger.warning(f"Intent creation rejected: {type(e).__name__}: {e.message}")
        return error_response(e)

    return web.json_response(handle.to_dict())


async def webhook_endpoint(request: web.Request) -> web.Response:
    """Handle POST /stripe-webhook.

    The raw body is passed through untouched; signature verification needs
    the exact bytes Stripe signed.
    """
    sig_header = request.headers.get("Stripe-Signature")
    if not sig_header:
        logger.error("Missing Stripe-Signature header")
        return web.json_response({"error": "Missing signature"}, status=400)

    payload = await request.read()
    return await handle_webhook(payload, sig_header)


async def entitlements_endpoint(request: web.Request) -> web.Response:
    """Handle GET /entitlements?userId=..."""
    user_id = request.query.get("userId")
    if not user_id:
        return error_response(InvalidInput("userId is required"))

    try:
        entitlements = await fetch_entitlements(user_id)
    except PaymentError as e:
        return error_response(e)

    return web.json_response(entitlements.to_dict())


async def client_config_endpoint(request: web.Request) -> web.Response:
    """Handle GET /client-config: public settings for the viewer."""
    config = get_config()
    return web.json_response(
        {
            "publishableKey": config.stripe_publishable_key.get_secret_value(),
            "currency": config.currency,
            "lifetimePrice": config.lifetime_price,
            "upsellDelayMs": config.upsell_delay_ms,
        }
    )


async def health_endpoint(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


def create_app() -> web.Application:
    """Create aiohttp application with all routes."""
    app = web.Application(middlewares=[cors_middleware])
    app.router.add_post("/create-payment-intent", create_intent_endpoint)
    app.router.add_post("/stripe-webhook", webhook_endpoint)
    app.router.add_get("/entitlements", entitlements_endpoint)
    app.router.add_get("/client-config", client_config_endpoint)
    app.router.add_get("/health", health_endpoint)
    return app


async def run_server(shutdown_event: Optional[asyncio.Event] = None) -> None:
    """Run the HTTP server until shutdown_event is set.

    Args:
        shutdown_event: Optional event to signal shutdown; runs forever if None
    """
    config = get_config()
    app = create_app()

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, config.server_host, config.server_port)
    await site.start()

    logger.info(f"Server listening on {config.server_host}:{config.server_port}")

    try:
        await (shutdown_event or asyncio.Event()).wait()
    finally:
        logger.info("Shutting down server...")
        await runner.cleanup()


def install_signal_handlers(shutdown_event: asyncio.Event) -> None:
    """Set shutdown_event on SIGTERM/SIGINT."""

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)
