"""Viewer-side purchase state: lock store, upsell timer and purchase flows."""

from gallery.client.api import ApiError, ClientConfig, GalleryClient
from gallery.client.checkout import PurchaseFlow
from gallery.client.unlock import InvalidTransition, ItemState, UnlockStore
from gallery.client.upsell import UpsellScheduler

__all__ = [
    "ApiError",
    "ClientConfig",
    "GalleryClient",
    "InvalidTransition",
    "ItemState",
    "PurchaseFlow",
    "UnlockStore",
    "UpsellScheduler",
]
