"""Viewer purchase flows tying the API client, lock state and upsell together."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from gallery.client.api import GalleryClient
from gallery.client.unlock import ItemState, UnlockStore
from gallery.client.upsell import UpsellScheduler
from gallery.db.models import IntentMode

logger = logging.getLogger(__name__)

# Confirms an embedded payment given its client secret; raises on failure
ConfirmPayment = Callable[[str], Awaitable[None]]


class PurchaseFlow:
    """Drives a viewer's purchases against one UnlockStore.

    Every failure path reverts the item to Locked with a message, so no
    item is ever left in Unlocking. close() cancels in-flight embedded
    confirmations and the upsell timer when the viewer navigates away.
    """

    def __init__(
        self,
        api: GalleryClient,
        store: UnlockStore,
        upsell: Optional[UpsellScheduler] = None,
        user_id: Optional[str] = None,
        lifetime_price: Optional[int] = None,
        poll_attempts: int = 5,
        poll_interval: float = 1.0,
    ):
        self.api = api
        self.store = store
        self.upsell = upsell
        self.user_id = user_id
        self.lifetime_price = lifetime_price
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self._tasks: set[asyncio.Task] = set()

    async def refresh(self) -> None:
        """Rebuild lock state from the server's entitlements for this viewer."""
        item_ids = self.store.item_ids()
        if self.user_id is None:
            self.store.load(item_ids)
            return
        entitlements = await self.api.fetch_entitlements(self.user_id)
        self.store.load(item_ids, entitlements)
        if entitlements.lifetime and self.upsell is not None:
            self.upsell.cancel()

    async def purchase_embedded(
        self,
        item_id: str,
        price: float,
        confirm: ConfirmPayment,
    ) -> bool:
        """Buy one item with an in-page payment form.

        Returns:
            True once the provider confirms the payment, False on failure

        Raises:
            asyncio.CancelledError: If cancelled mid-flight; the item is
                reverted to Locked first
        """
        self.store.request_unlock(item_id)
        try:
            body = await self.api.create_intent(
                IntentMode.SINGLE_EMBEDDED, price, content_item_id=item_id, user_id=self.user_id
            )
            await confirm(body["clientSecret"])
        except asyncio.CancelledError:
            self._fail(item_id, "Payment cancelled")
            raise
        except Exception as e:
            logger.warning(f"Embedded purchase of {item_id} failed: {e}")
            self._fail(item_id, str(e) or "Payment failed")
            return False

        self._confirm(item_id)
        self._offer_upsell()
        return True

    def start_embedded(self, item_id: str, price: float, confirm: ConfirmPayment) -> asyncio.Task:
        """Run purchase_embedded as a task that close() can cancel."""
        task = asyncio.get_running_loop().create_task(
            self.purchase_embedded(item_id, price, confirm)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def start_redirect(self, item_id: str, price: float) -> Optional[dict]:
        """Create a hosted checkout session for one item.

        Returns:
            {"sessionId", "checkoutUrl"?} to navigate to, or None on failure
        """
        self.store.request_unlock(item_id)
        try:
            return await self.api.create_intent(
                IntentMode.SINGLE_REDIRECT, price, content_item_id=item_id, user_id=self.user_id
            )
        except Exception as e:
            logger.warning(f"Checkout session for {item_id} failed: {e}")
            self._fail(item_id, str(e) or "Payment failed")
            return None

    async def complete_redirect(self, item_id: str) -> bool:
        """Handle return navigation from hosted checkout for one item.

        The return URL alone proves nothing; the item unlocks only once the
        server has recorded the purchase.
        """
        if self.store.state(item_id) is ItemState.UNLOCKED:
            return True
        if self.store.state(item_id) is ItemState.LOCKED:
            self.store.request_unlock(item_id)

        try:
            corroborated = await self._poll_entitlements(
                lambda e: e.lifetime or item_id in e.content_item_ids
            )
        except asyncio.CancelledError:
            self._fail(item_id, "Payment check cancelled")
            raise
        except Exception as e:
            logger.warning(f"Entitlement check for {item_id} failed: {e}")
            self._fail(item_id, str(e) or "Could not confirm payment")
            return False

        if corroborated is None:
            self._fail(item_id, "Payment not confirmed yet. Refresh in a moment.")
            return False

        if corroborated.lifetime:
            self.apply_lifetime_grant()
        else:
            self._confirm(item_id)
            self._offer_upsell()
        return True

    async def purchase_lifetime(self, price: Optional[float] = None) -> dict:
        """Create a hosted checkout session for lifetime access.

        Raises:
            ApiError: If the server rejects the request
        """
        if self.upsell is not None:
            self.upsell.cancel()
        amount = price if price is not None else self.lifetime_price
        if amount is None:
            raise ValueError("lifetime price unknown; pass price or lifetime_price")
        return await self.api.create_intent(IntentMode.LIFETIME, amount, user_id=self.user_id)

    async def complete_lifetime_redirect(self) -> bool:
        """Handle return navigation from the lifetime checkout."""
        corroborated = await self._poll_entitlements(lambda e: e.lifetime)
        if corroborated is None:
            return False
        self.apply_lifetime_grant()
        return True

    def apply_lifetime_grant(self) -> None:
        self.store.apply_lifetime_grant()
        if self.upsell is not None:
            self.upsell.cancel()

    def close(self) -> None:
        """Viewer navigated away: cancel confirmations and the upsell timer."""
        for task in list(self._tasks):
            task.cancel()
        if self.upsell is not None:
            self.upsell.close()

    def _confirm(self, item_id: str) -> None:
        """Settle a paid purchase, whatever a refresh did to the item meanwhile."""
        state = self.store.state(item_id)
        if state is ItemState.UNLOCKED:
            return
        if state is ItemState.LOCKED:
            self.store.request_unlock(item_id)
        self.store.confirm_unlock(item_id)

    def _fail(self, item_id: str, message: str) -> None:
        """Settle a failed purchase so the item is Locked with the message shown."""
        state = self.store.state(item_id)
        if state is ItemState.UNLOCKED:
            return
        if state is ItemState.LOCKED:
            self.store.request_unlock(item_id)
        self.store.fail_unlock(item_id, message)

    def _offer_upsell(self) -> None:
        if self.upsell is not None and not self.store.has_lifetime:
            self.upsell.schedule()

    async def _poll_entitlements(self, predicate):
        if self.user_id is None:
            logger.warning("Cannot corroborate a purchase without a viewer identity")
            return None

        for attempt in range(self.poll_attempts):
            entitlements = await self.api.fetch_entitlements(self.user_id)
            if predicate(entitlements):
                return entitlements
            if attempt + 1 < self.poll_attempts:
                await asyncio.sleep(self.poll_interval)
        return None
