"""Stripe payment processing for paywalled content.

Handles price validation, intent/session creation, webhook processing and
the purchase/lifetime-grant ledger.
"""

from gallery.payments.intents import create_intent, parse_intent_request
from gallery.payments.ledger import fetch_entitlements
from gallery.payments.pricing import validate_price
from gallery.payments.webhooks import handle_webhook

__all__ = [
    "create_intent",
    "fetch_entitlements",
    "handle_webhook",
    "parse_intent_request",
    "validate_price",
]
