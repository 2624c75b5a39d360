"""Read-only access to the catalog's content items."""

import logging
from dataclasses import dataclass
from datetime import datetime

from gallery.db.models import Table
from gallery.db.pool import DATABASE_ERRORS, get_pool
from gallery.payments.errors import NotFound, PersistenceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentItem:
    """A purchasable artwork as published by the catalog."""

    id: str
    title: str
    description: str
    media_url: str
    price: int  # minor currency units
    created_at: datetime
    artist_id: str | None = None

    @classmethod
    def from_row(cls, row) -> "ContentItem":
        return cls(
            id=row["id"],
            title=row["title"],
            description=row["description"] or "",
            media_url=row["media_url"] or "",
            price=int(row["price"]),
            created_at=row["created_at"],
            artist_id=row["artist_id"],
        )


async def fetch_content_item(content_item_id: str) -> ContentItem:
    """Look up a content item by id.

    Raises:
        NotFound: If no item has this id
        PersistenceError: If the store cannot be queried
    """
    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT id, artist_id, title, description, media_url, price, created_at
                FROM {Table.CONTENT_ITEMS}
                WHERE id = $1
                """,
                content_item_id,
            )
    except DATABASE_ERRORS as e:
        logger.error(f"Content item lookup failed for {content_item_id}: {e}")
        raise PersistenceError("Content item lookup failed") from e

    if row is None:
        raise NotFound(f"Content item {content_item_id} not found")

    return ContentItem.from_row(row)
