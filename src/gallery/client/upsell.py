"""Delayed lifetime-access offer shown after a single-item purchase."""

import asyncio
import logging
from typing import Callable, Optional

from gallery.client.unlock import Transition, UnlockStore

logger = logging.getLogger(__name__)

DEFAULT_UPSELL_DELAY_MS = 5000


class UpsellScheduler:
    """Cancellable upsell timers on the running event loop.

    Each schedule() call arms its own single-shot offer, so every successful
    single purchase gets one. An offer is skipped when the viewer already
    holds a lifetime grant at fire time.
    """

    def __init__(
        self,
        on_offer: Callable[[], None],
        has_lifetime: Callable[[], bool],
        delay_ms: int = DEFAULT_UPSELL_DELAY_MS,
    ):
        if delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")
        self.on_offer = on_offer
        self.has_lifetime = has_lifetime
        self.delay_ms = delay_ms
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None

    @classmethod
    def for_store(
        cls,
        store: UnlockStore,
        on_offer: Callable[[], None],
        delay_ms: int = DEFAULT_UPSELL_DELAY_MS,
    ) -> "UpsellScheduler":
        """Scheduler reading lifetime state from store and cancelling on grant."""
        scheduler = cls(on_offer, lambda: store.has_lifetime, delay_ms)
        scheduler._unsubscribe = store.subscribe(scheduler._on_transition)
        return scheduler

    @property
    def pending(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def schedule(self) -> bool:
        """Arm one offer timer. Must be called from a running event loop.

        Returns:
            False if the viewer already holds a lifetime grant
        """
        if self.has_lifetime():
            logger.debug("Upsell skipped: viewer holds a lifetime grant")
            return False

        task = asyncio.get_running_loop().create_task(self._fire_after_delay())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    def cancel(self) -> bool:
        """Cancel every pending offer. Returns True if any was pending."""
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        self._tasks.clear()
        if pending:
            logger.debug(f"Upsell cancelled ({len(pending)} pending)")
        return bool(pending)

    def close(self) -> None:
        """Cancel and stop listening to the store (viewer navigated away)."""
        self.cancel()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _fire_after_delay(self) -> None:
        await asyncio.sleep(self.delay_ms / 1000)
        if self.has_lifetime():
            logger.debug("Upsell dropped at fire time: lifetime grant arrived")
            return
        logger.info("Offering lifetime access upsell")
        try:
            self.on_offer()
        except Exception:
            logger.exception("Upsell offer callback failed")

    def _on_transition(self, transition: Transition) -> None:
        if transition.action == "apply_lifetime_grant":
            self.cancel()
