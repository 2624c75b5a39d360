"""Viewer-side lock state for content items.

The store is a cache of server-side entitlements used to drive the UI; it
never authorizes access to the media itself. All changes go through the
four actions below, each recorded in ``history`` and pushed to subscribers:

    Locked --request_unlock--> Unlocking --confirm_unlock--> Unlocked
                                   |
                                   +------fail_unlock------> Locked (error kept)

apply_lifetime_grant moves every item to Unlocked and keeps it there.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from gallery.payments.ledger import Entitlements

logger = logging.getLogger(__name__)


class ItemState(str, Enum):
    LOCKED = "locked"
    UNLOCKING = "unlocking"
    UNLOCKED = "unlocked"


class InvalidTransition(Exception):
    """Action not allowed from the item's current state."""


@dataclass(frozen=True)
class Transition:
    action: str
    item_id: Optional[str]  # None for store-wide actions
    before: Optional[ItemState]
    after: Optional[ItemState]


Listener = Callable[[Transition], None]


class UnlockStore:
    """Explicit state container for per-item lock state."""

    def __init__(self, item_ids: Iterable[str] = ()):
        self._states: dict[str, ItemState] = {}
        self._errors: dict[str, str] = {}
        self._lifetime = False
        self._listeners: list[Listener] = []
        self.history: list[Transition] = []
        self.load(item_ids)

    @property
    def has_lifetime(self) -> bool:
        return self._lifetime

    def item_ids(self) -> list[str]:
        return list(self._states)

    def state(self, item_id: str) -> ItemState:
        try:
            return self._states[item_id]
        except KeyError:
            raise InvalidTransition(f"Unknown content item: {item_id}") from None

    def is_locked(self, item_id: str) -> bool:
        return self.state(item_id) is not ItemState.UNLOCKED

    def error(self, item_id: str) -> Optional[str]:
        return self._errors.get(item_id)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def load(
        self,
        item_ids: Iterable[str],
        entitlements: Optional[Entitlements] = None,
    ) -> None:
        """Rebuild state from the server's view of the viewer's entitlements.

        Without entitlements (guest viewer) every item starts Locked. Items
        with a purchase in flight stay Unlocking unless the entitlements
        already unlock them; the purchase settles them through the actions.
        """
        owned = entitlements.content_item_ids if entitlements else frozenset()
        self._lifetime = bool(entitlements and entitlements.lifetime)
        in_flight = {
            item_id for item_id, state in self._states.items() if state is ItemState.UNLOCKING
        }
        self._errors.clear()
        states = {}
        for item_id in item_ids:
            if self._lifetime or item_id in owned:
                states[item_id] = ItemState.UNLOCKED
            elif item_id in in_flight:
                states[item_id] = ItemState.UNLOCKING
            else:
                states[item_id] = ItemState.LOCKED
        self._states = states
        self._emit(Transition("load", None, None, None))

    def add_item(self, item_id: str) -> None:
        """Track a newly listed item; unlocked at once under a lifetime grant."""
        if item_id not in self._states:
            self._states[item_id] = ItemState.UNLOCKED if self._lifetime else ItemState.LOCKED

    def request_unlock(self, item_id: str) -> None:
        """User started a purchase. Clears any previous error."""
        self._move(item_id, "request_unlock", ItemState.LOCKED, ItemState.UNLOCKING)
        self._errors.pop(item_id, None)

    def confirm_unlock(self, item_id: str) -> None:
        """Payment confirmed for a purchase in flight."""
        if self.state(item_id) is ItemState.UNLOCKED and self._lifetime:
            return
        self._move(item_id, "confirm_unlock", ItemState.UNLOCKING, ItemState.UNLOCKED)

    def fail_unlock(self, item_id: str, message: str) -> None:
        """Purchase failed or was abandoned; the message stays until the next attempt."""
        if self.state(item_id) is ItemState.UNLOCKED and self._lifetime:
            return
        self._move(item_id, "fail_unlock", ItemState.UNLOCKING, ItemState.LOCKED)
        self._errors[item_id] = message

    def apply_lifetime_grant(self) -> None:
        """Viewer holds a lifetime grant: unlock everything."""
        self._lifetime = True
        self._errors.clear()
        for item_id, before in self._states.items():
            self._states[item_id] = ItemState.UNLOCKED
            if before is not ItemState.UNLOCKED:
                self._record(Transition("apply_lifetime_grant", item_id, before, ItemState.UNLOCKED))
        self._emit(Transition("apply_lifetime_grant", None, None, ItemState.UNLOCKED))

    def _move(self, item_id: str, action: str, expected: ItemState, target: ItemState) -> None:
        current = self.state(item_id)
        if current is not expected:
            raise InvalidTransition(
                f"{action} requires {expected.value}, item {item_id} is {current.value}"
            )
        self._states[item_id] = target
        self._emit(Transition(action, item_id, current, target))

    def _record(self, transition: Transition) -> None:
        self.history.append(transition)
        logger.debug(
            f"{transition.action}: {transition.item_id} "
            f"{transition.before and transition.before.value} -> {transition.after and transition.after.value}"
        )

    def _emit(self, transition: Transition) -> None:
        self._record(transition)
        for listener in list(self._listeners):
            listener(transition)
