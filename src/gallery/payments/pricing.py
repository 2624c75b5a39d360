"""Price integrity check run before any provider call."""

import math

from gallery.payments.errors import InvalidInput, PriceMismatch


def validate_price(requested, canonical: int, epsilon: float) -> None:
    """Confirm a client-supplied price matches the canonical price.

    Args:
        requested: Price sent by the client, in minor currency units
        canonical: Server-side price in minor currency units
        epsilon: Largest accepted absolute divergence

    Raises:
        InvalidInput: If requested is not a finite number
        PriceMismatch: If |requested - canonical| > epsilon
    """
    # bool is an int subclass; a JSON true is not a price
    if isinstance(requested, bool) or not isinstance(requested, (int, float)):
        raise InvalidInput("price must be a number")
    if not math.isfinite(requested):
        raise InvalidInput("price must be a finite number")

    if abs(requested - canonical) > epsilon:
        raise PriceMismatch(requested, canonical)
