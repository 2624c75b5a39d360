"""Payment intent and Checkout Session creation.

Three request shapes are supported:

- single_embedded: a PaymentIntent confirmed in-page by the provider's
  client library; the caller receives its client secret.
- single_redirect: a hosted Checkout Session for one content item.
- lifetime: a hosted Checkout Session for lifetime access at the fixed
  server-side price.

Every intent/session carries metadata naming the purchase type (and the
content item for single purchases). The webhook processor has no other way
to interpret the completion event, so each code path builds it explicitly.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Union

import stripe

from gallery.config.settings import AppConfig, get_config
from gallery.db.models import IntentMode, PurchaseType
from gallery.payments.catalog import ContentItem, fetch_content_item
from gallery.payments.errors import InvalidInput, ProviderError
from gallery.payments.pricing import validate_price

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


@dataclass(frozen=True)
class SingleItemEmbedded:
    content_item_id: str
    requested_price: float
    user_id: Optional[str] = None


@dataclass(frozen=True)
class SingleItemRedirect:
    content_item_id: str
    requested_price: float
    user_id: Optional[str] = None


@dataclass(frozen=True)
class LifetimeAccess:
    requested_price: float
    user_id: Optional[str] = None


IntentRequest = Union[SingleItemEmbedded, SingleItemRedirect, LifetimeAccess]


@dataclass(frozen=True)
class EmbeddedIntent:
    """Client-confirmable PaymentIntent plus the validated item echo."""

    client_secret: str
    item: ContentItem

    def to_dict(self) -> dict:
        return {
            "clientSecret": self.client_secret,
            "item": {
                "id": self.item.id,
                "title": self.item.title,
                "price": self.item.price,
            },
        }


@dataclass(frozen=True)
class CheckoutRedirect:
    """Hosted Checkout Session handle."""

    session_id: str
    checkout_url: Optional[str] = None

    def to_dict(self) -> dict:
        body = {"sessionId": self.session_id}
        if self.checkout_url:
            body["checkoutUrl"] = self.checkout_url
        return body


IntentHandle = Union[EmbeddedIntent, CheckoutRedirect]


def parse_intent_request(body) -> IntentRequest:
    """Map a POST /create-payment-intent JSON body to a typed request.

    Raises:
        InvalidInput: On a missing/unknown type, missing contentItemId for
            single purchases, missing price, or a non-string userId
    """
    if not isinstance(body, dict):
        raise InvalidInput("Request body must be a JSON object")

    mode = body.get("type")
    price = body.get("price")
    user_id = body.get("userId")

    if price is None:
        raise InvalidInput("price is required")
    if user_id is not None and not isinstance(user_id, str):
        raise InvalidInput("userId must be a string")

    if mode == IntentMode.LIFETIME.value:
        return LifetimeAccess(requested_price=price, user_id=user_id)

    if mode not in (IntentMode.SINGLE_EMBEDDED.value, IntentMode.SINGLE_REDIRECT.value):
        raise InvalidInput(
            f"type must be one of: {', '.join(m.value for m in IntentMode)}"
        )

    content_item_id = body.get("contentItemId")
    if not content_item_id or not isinstance(content_item_id, str):
        raise InvalidInput("contentItemId is required for single-item purchases")

    if mode == IntentMode.SINGLE_EMBEDDED.value:
        return SingleItemEmbedded(content_item_id, price, user_id)
    return SingleItemRedirect(content_item_id, price, user_id)


async def create_intent(
    request: IntentRequest,
    origin: Optional[str] = None,
) -> IntentHandle:
    """Create a provider intent/session for a validated purchase request.

    The item lookup and price check happen before the provider is contacted,
    and the provider is always charged the canonical price.

    Args:
        request: Parsed purchase request
        origin: Site origin used for hosted-checkout return URLs; falls back
            to the configured site_origin

    Returns:
        EmbeddedIntent or CheckoutRedirect

    Raises:
        NotFound: Content item absent
        PriceMismatch: Requested price diverges from canonical
        InvalidInput: Requested price is not a number
        ProviderError: Provider rejected the request or was unreachable
        PersistenceError: Content item lookup failed
    """
    config = get_config()
    origin = (origin or config.site_origin).rstrip("/")

    if isinstance(request, LifetimeAccess):
        validate_price(request.requested_price, config.lifetime_price, config.price_tolerance)
        return await _create_lifetime_session(config, request, origin)

    if not isinstance(request, (SingleItemEmbedded, SingleItemRedirect)):
        raise InvalidInput(f"Unsupported request: {type(request).__name__}")

    item = await fetch_content_item(request.content_item_id)
    validate_price(request.requested_price, item.price, config.price_tolerance)

    if isinstance(request, SingleItemEmbedded):
        return await _create_embedded_intent(config, item, request.user_id)
    return await _create_item_session(config, item, request.user_id, origin)


def build_metadata(
    purchase_type: PurchaseType,
    content_item_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> dict[str, str]:
    """Metadata attached to every intent and session.

    Raises:
        ValueError: For a single purchase without a content item id
    """
    metadata = {"type": purchase_type.value}
    if purchase_type is PurchaseType.SINGLE:
        if not content_item_id:
            raise ValueError("single purchases require content_item_id")
        metadata["contentItemId"] = content_item_id
    if user_id:
        metadata["userId"] = user_id
    return metadata


async def _create_embedded_intent(
    config: AppConfig,
    item: ContentItem,
    user_id: Optional[str],
) -> EmbeddedIntent:
    metadata = build_metadata(PurchaseType.SINGLE, item.id, user_id)
    intent = await _call_provider(
        stripe.PaymentIntent.create,
        amount=item.price,
        currency=config.currency,
        description=item.title,
        automatic_payment_methods={"enabled": True},
        metadata=metadata,
    )

    logger.info(f"Created payment intent {intent.id} for item {item.id}")
    return EmbeddedIntent(client_secret=intent.client_secret, item=item)


async def _create_item_session(
    config: AppConfig,
    item: ContentItem,
    user_id: Optional[str],
    origin: str,
) -> CheckoutRedirect:
    product_data = {"name": item.title}
    if item.description:
        product_data["description"] = item.description
    if item.media_url:
        product_data["images"] = [item.media_url]

    metadata = build_metadata(PurchaseType.SINGLE, item.id, user_id)
    session = await _create_session(
        config,
        unit_amount=item.price,
        product_data=product_data,
        metadata=metadata,
        user_id=user_id,
        origin=origin,
    )

    logger.info(f"Created checkout session {session.id} for item {item.id}")
    return CheckoutRedirect(session_id=session.id, checkout_url=getattr(session, "url", None))


async def _create_lifetime_session(
    config: AppConfig,
    request: LifetimeAccess,
    origin: str,
) -> CheckoutRedirect:
    metadata = build_metadata(PurchaseType.LIFETIME, user_id=request.user_id)
    session = await _create_session(
        config,
        unit_amount=config.lifetime_price,
        product_data={
            "name": "Lifetime Access",
            "description": "Unlimited access to all artworks",
        },
        metadata=metadata,
        user_id=request.user_id,
        origin=origin,
    )

    logger.info(f"Created lifetime checkout session {session.id}")
    return CheckoutRedirect(session_id=session.id, checkout_url=getattr(session, "url", None))


async def _create_session(
    config: AppConfig,
    unit_amount: int,
    product_data: dict,
    metadata: dict[str, str],
    user_id: Optional[str],
    origin: str,
):
    params = {
        "mode": "payment",
        "payment_method_types": ["card"],
        "line_items": [
            {
                "price_data": {
                    "currency": config.currency,
                    "product_data": product_data,
                    "unit_amount": unit_amount,
                },
                "quantity": 1,
            }
        ],
        "success_url": f"{origin}/success?session_id={CHECKOUT_SESSION_PLACEHOLDER}",
        "cancel_url": f"{origin}/",
        "metadata": metadata,
        # Copied to the PaymentIntent so payment_intent.succeeded is interpretable too
        "payment_intent_data": {"metadata": metadata},
    }
    if user_id:
        params["client_reference_id"] = user_id

    return await _call_provider(stripe.checkout.Session.create, **params)


async def _call_provider(method, **params):
    """Run a blocking Stripe SDK call off the event loop.

    No automatic retry: a failed call surfaces as ProviderError and the
    caller decides whether to try again.
    """
    config = get_config()
    stripe.api_key = config.stripe_secret_key.get_secret_value()
    stripe.max_network_retries = 0

    try:
        return await asyncio.to_thread(method, **params)
    except stripe.StripeError as e:
        logger.error(f"Stripe request failed: {e}")
        raise ProviderError(e.user_message or "Payment provider request failed") from e
