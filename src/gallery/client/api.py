"""HTTP client for the gallery payment server."""

import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp

from gallery.db.models import IntentMode
from gallery.payments.ledger import Entitlements

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Non-2xx response from the payment server."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


@dataclass(frozen=True)
class ClientConfig:
    """Public settings the server hands to viewers."""

    publishable_key: str
    currency: str
    lifetime_price: int
    upsell_delay_ms: int


class GalleryClient:
    """Async client for intent creation and entitlement lookup.

    Use as an async context manager, or pass an existing ClientSession
    which the caller keeps ownership of.
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: float = 10,
    ):
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def __aenter__(self) -> "GalleryClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def create_intent(
        self,
        mode: IntentMode,
        price: float,
        content_item_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> dict:
        """POST /create-payment-intent; returns the decoded JSON body."""
        body = {"type": mode.value, "price": price}
        if content_item_id is not None:
            body["contentItemId"] = content_item_id
        if user_id is not None:
            body["userId"] = user_id
        return await self._request("POST", "/create-payment-intent", json=body)

    async def fetch_entitlements(self, user_id: str) -> Entitlements:
        data = await self._request("GET", "/entitlements", params={"userId": user_id})
        return Entitlements(
            purchaser_id=user_id,
            lifetime=bool(data.get("lifetime")),
            content_item_ids=frozenset(data.get("contentItemIds") or ()),
        )

    async def fetch_client_config(self) -> ClientConfig:
        data = await self._request("GET", "/client-config")
        return ClientConfig(
            publishable_key=data["publishableKey"],
            currency=data["currency"],
            lifetime_price=int(data["lifetimePrice"]),
            upsell_delay_ms=int(data["upsellDelayMs"]),
        )

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        if self._session is None:
            raise RuntimeError("GalleryClient used outside 'async with'")

        async with self._session.request(method, f"{self.base_url}{path}", **kwargs) as response:
            try:
                data = await response.json(content_type=None)
            except ValueError:
                data = None

            if response.status >= 400:
                message = (data or {}).get("error") if isinstance(data, dict) else None
                raise ApiError(response.status, message or f"HTTP {response.status}")

        if not isinstance(data, dict):
            raise ApiError(response.status, f"Unexpected response body from {path}")
        return data
