"""Purchase and lifetime-grant records.

This module is the only writer of purchase_records and lifetime_grants.
Every insert is conditional on the provider payment reference, so replaying
the same completion event adds no rows; concurrent deliveries are settled
by the unique constraints rather than by application locks.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from gallery.db.models import PaymentStatus, Table
from gallery.db.pool import DATABASE_ERRORS, get_pool
from gallery.payments.errors import PersistenceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Entitlements:
    """What a purchaser may see, as stored server-side."""

    purchaser_id: str
    lifetime: bool = False
    content_item_ids: frozenset[str] = field(default_factory=frozenset)

    def to_dict(self) -> dict:
        return {
            "lifetime": self.lifetime,
            "contentItemIds": sorted(self.content_item_ids),
        }


async def record_purchase(
    purchaser_id: Optional[str],
    content_item_id: str,
    amount_paid: int,
    payment_reference: str,
) -> bool:
    """Insert a completed PurchaseRecord unless one exists for this payment.

    Args:
        purchaser_id: Purchaser identity, None for guest checkouts
        content_item_id: Purchased content item
        amount_paid: Amount charged in minor currency units
        payment_reference: Provider payment reference (idempotency key)

    Returns:
        True if a row was inserted, False for a duplicate delivery

    Raises:
        PersistenceError: On database errors
    """
    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            inserted_id = await conn.fetchval(
                f"""
                INSERT INTO {Table.PURCHASE_RECORDS}
                    (purchaser_id, content_item_id, amount_paid, payment_reference, status)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (payment_reference) DO NOTHING
                RETURNING id
                """,
                purchaser_id,
                content_item_id,
                amount_paid,
                payment_reference,
                PaymentStatus.COMPLETED.value,
            )
    except DATABASE_ERRORS as e:
        logger.error(f"Failed to record purchase {payment_reference}: {e}")
        raise PersistenceError("Failed to record purchase") from e

    if inserted_id is None:
        logger.info(f"Purchase {payment_reference} already recorded - skipping")
        return False

    logger.info(
        f"Recorded purchase {payment_reference}: item={content_item_id}, "
        f"purchaser={purchaser_id}, amount={amount_paid}"
    )
    return True


async def record_lifetime_grant(
    purchaser_id: Optional[str],
    payment_reference: str,
) -> bool:
    """Insert a completed LifetimeGrant unless it would duplicate one.

    A grant is skipped when this payment was already recorded or when the
    purchaser already holds an active grant.

    Returns:
        True if a row was inserted, False otherwise

    Raises:
        PersistenceError: On database errors
    """
    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            inserted_id = await conn.fetchval(
                f"""
                INSERT INTO {Table.LIFETIME_GRANTS}
                    (purchaser_id, payment_reference, status)
                VALUES ($1, $2, $3)
                ON CONFLICT DO NOTHING
                RETURNING id
                """,
                purchaser_id,
                payment_reference,
                PaymentStatus.COMPLETED.value,
            )
    except DATABASE_ERRORS as e:
        logger.error(f"Failed to record lifetime grant {payment_reference}: {e}")
        raise PersistenceError("Failed to record lifetime grant") from e

    if inserted_id is None:
        logger.warning(
            f"Lifetime grant {payment_reference} not inserted: duplicate delivery "
            f"or purchaser {purchaser_id} already holds a grant"
        )
        return False

    logger.info(f"Recorded lifetime grant {payment_reference} for {purchaser_id}")
    return True


async def fetch_entitlements(purchaser_id: str) -> Entitlements:
    """Load the completed purchases and active lifetime grant of a purchaser.

    Raises:
        PersistenceError: On database errors
    """
    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            lifetime = await conn.fetchval(
                f"""
                SELECT EXISTS (
                    SELECT 1 FROM {Table.LIFETIME_GRANTS}
                    WHERE purchaser_id = $1 AND status = $2
                )
                """,
                purchaser_id,
                PaymentStatus.COMPLETED.value,
            )
            rows = await conn.fetch(
                f"""
                SELECT DISTINCT content_item_id
                FROM {Table.PURCHASE_RECORDS}
                WHERE purchaser_id = $1 AND status = $2
                """,
                purchaser_id,
                PaymentStatus.COMPLETED.value,
            )
    except DATABASE_ERRORS as e:
        logger.error(f"Failed to load entitlements for {purchaser_id}: {e}")
        raise PersistenceError("Failed to load entitlements") from e

    return Entitlements(
        purchaser_id=purchaser_id,
        lifetime=bool(lifetime),
        content_item_ids=frozenset(row["content_item_id"] for row in rows),
    )
