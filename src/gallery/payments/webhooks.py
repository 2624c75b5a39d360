"""Stripe webhook handler and event processing."""

import json
import logging
from dataclasses import dataclass
from typing import Optional

import stripe
from aiohttp import web

from gallery.config.settings import get_config
from gallery.db.models import PurchaseType
from gallery.payments.errors import InvalidInput, PaymentError, SignatureInvalid
from gallery.payments.ledger import record_lifetime_grant, record_purchase

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"


@dataclass(frozen=True)
class CompletionEvent:
    """A verified payment completion, reduced to what the ledger needs."""

    purchase_type: PurchaseType
    payment_reference: str
    amount: int
    purchaser_id: Optional[str] = None
    content_item_id: Optional[str] = None


def verify_event(payload: bytes, sig_header: Optional[str]) -> dict:
    """Verify the Stripe signature and parse the event.

    Returns:
        The event as plain dicts decoded from the verified payload

    Raises:
        SignatureInvalid: If the header is missing, the signature does not
            match, or the payload is not a valid event
    """
    if not sig_header:
        raise SignatureInvalid("Missing signature")

    config = get_config()
    try:
        stripe.Webhook.construct_event(
            payload,
            sig_header,
            config.stripe_webhook_secret.get_secret_value(),
        )
    except ValueError as e:
        raise SignatureInvalid("Invalid payload") from e
    except stripe.SignatureVerificationError as e:
        raise SignatureInvalid("Invalid signature") from e

    # StripeObject is not a dict in current SDKs; fields are read from plain JSON
    event = json.loads(payload)
    if not isinstance(event, dict):
        raise SignatureInvalid("Invalid payload")
    return event


def parse_completion(event_type: str, obj) -> Optional[CompletionEvent]:
    """Map a completion event's data object to a CompletionEvent.

    Both kinds are keyed on the PaymentIntent id, so a hosted checkout that
    emits checkout.session.completed and payment_intent.succeeded records
    once.

    Returns:
        CompletionEvent, or None for a checkout session that is not yet paid

    Raises:
        InvalidInput: If metadata or payment fields required for the
            purchase type are missing
    """
    metadata = obj.get("metadata") or {}

    if event_type == CHECKOUT_COMPLETED:
        if obj.get("payment_status") != "paid":
            logger.info(
                f"Checkout session {obj.get('id')} completed with "
                f"payment_status={obj.get('payment_status')} - nothing to record"
            )
            return None
        payment_reference = obj.get("payment_intent")
        amount = obj.get("amount_total")
        purchaser_id = obj.get("client_reference_id") or metadata.get("userId")
    else:
        payment_reference = obj.get("id")
        amount = obj.get("amount_received") or obj.get("amount")
        purchaser_id = metadata.get("userId")

    if not payment_reference:
        raise InvalidInput(f"{event_type} missing payment reference")
    if amount is None:
        raise InvalidInput(f"{event_type} missing amount")

    raw_type = metadata.get("type")
    try:
        purchase_type = PurchaseType(raw_type)
    except ValueError:
        raise InvalidInput(f"{event_type} has missing or unknown metadata type: {raw_type!r}")

    content_item_id = None
    if purchase_type is PurchaseType.SINGLE:
        content_item_id = metadata.get("contentItemId")
        if not content_item_id:
            raise InvalidInput(f"{event_type} single purchase missing contentItemId")

    return CompletionEvent(
        purchase_type=purchase_type,
        payment_reference=payment_reference,
        amount=int(amount),
        purchaser_id=purchaser_id or None,
        content_item_id=content_item_id,
    )


async def apply_completion(completion: CompletionEvent) -> bool:
    """Write the record for a completion event.

    Returns:
        True if a new row was written, False for a duplicate
    """
    if completion.purchase_type is PurchaseType.LIFETIME:
        return await record_lifetime_grant(
            purchaser_id=completion.purchaser_id,
            payment_reference=completion.payment_reference,
        )

    return await record_purchase(
        purchaser_id=completion.purchaser_id,
        content_item_id=completion.content_item_id,
        amount_paid=completion.amount,
        payment_reference=completion.payment_reference,
    )


async def handle_webhook(payload: bytes, sig_header: Optional[str]) -> web.Response:
    """Handle and verify Stripe webhook events.

    Verifies the signature before anything else; a failed verification
    never touches the database. Completion events are recorded
    idempotently, every other event kind is acknowledged untouched.

    Args:
        payload: Raw webhook payload bytes
        sig_header: Stripe-Signature header value

    Returns:
        aiohttp.web.Response: 200 {"received": true} when accepted,
        400 for signature or metadata problems, 500 for store failures
        (Stripe re-delivers on any non-2xx)
    """
    try:
        event = verify_event(payload, sig_header)
    except SignatureInvalid as e:
        logger.error(f"Rejected webhook: {e.message}")
        return web.json_response({"error": e.message}, status=e.status)

    event_type = event.get("type")
    logger.info(f"Received webhook: {event_type} ({event.get('id')})")

    if event_type not in (CHECKOUT_COMPLETED, PAYMENT_INTENT_SUCCEEDED):
        logger.info(f"Unhandled event type: {event_type}")
        return web.json_response({"received": True})

    try:
        obj = (event.get("data") or {}).get("object")
        if not isinstance(obj, dict):
            raise InvalidInput(f"{event_type} missing data object")
        completion = parse_completion(event_type, obj)
        if completion is not None:
            await apply_completion(completion)
    except PaymentError as e:
        logger.error(f"Error processing webhook {event_type}: {e.message}")
        return web.json_response({"error": e.message}, status=e.status)
    except Exception as e:
        logger.exception(f"Error processing webhook {event_type}: {e}")
        return web.json_response({"error": "Webhook processing failed"}, status=500)

    return web.json_response({"received": True})
