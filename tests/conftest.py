"""Pytest configuration and shared fixtures.

The database is replaced by FakeConnection, which emulates the unique
constraints the ledger relies on (payment_reference on both tables, one
active lifetime grant per purchaser) so idempotency can be checked without
a running Postgres.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest

from gallery.config.settings import reset_config

REQUIRED_ENV = {
    "DB_DSN": "postgresql://gallery@localhost:5432/gallery",
    "DB_SERVICE_KEY": "service-role-key",
    "STRIPE_SECRET_KEY": "sk_test_123",
    "STRIPE_PUBLISHABLE_KEY": "pk_test_123",
    "STRIPE_WEBHOOK_SECRET": "whsec_test_123",
}


@pytest.fixture(autouse=True)
def app_env(monkeypatch):
    """Provide a complete, valid configuration for every test."""
    for key, value in REQUIRED_ENV.items():
        monkeypatch.setenv(key, value)
    monkeypatch.delenv("PRICE_TOLERANCE", raising=False)
    monkeypatch.delenv("LIFETIME_PRICE", raising=False)
    reset_config()
    yield
    reset_config()


class FakeConnection:
    """In-memory stand-in for an asyncpg connection."""

    def __init__(self):
        self.content_items: dict[str, dict] = {}
        self.purchase_records: list[dict] = []
        self.lifetime_grants: list[dict] = []
        self.statements: list[str] = []

    def add_content_item(self, item_id: str, price: int, title: str = "Artwork") -> None:
        self.content_items[item_id] = {
            "id": item_id,
            "artist_id": "artist-1",
            "title": title,
            "description": f"{title} description",
            "media_url": f"https://cdn.example.com/{item_id}.jpg",
            "price": price,
            "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
        }

    @property
    def writes(self) -> list[str]:
        return [s for s in self.statements if "INSERT" in s]

    async def fetchrow(self, sql, *args):
        self.statements.append(sql)
        if "FROM content_items" in sql:
            return self.content_items.get(args[0])
        raise AssertionError(f"unexpected fetchrow: {sql}")

    async def fetchval(self, sql, *args):
        self.statements.append(sql)
        if "INSERT INTO purchase_records" in sql:
            purchaser_id, content_item_id, amount_paid, payment_reference, status = args
            if any(r["payment_reference"] == payment_reference for r in self.purchase_records):
                return None
            row_id = len(self.purchase_records) + 1
            self.purchase_records.append(
                {
                    "id": row_id,
                    "purchaser_id": purchaser_id,
                    "content_item_id": content_item_id,
                    "amount_paid": amount_paid,
                    "payment_reference": payment_reference,
                    "status": status,
                }
            )
            return row_id
        if "INSERT INTO lifetime_grants" in sql:
            purchaser_id, payment_reference, status = args
            for grant in self.lifetime_grants:
                if grant["payment_reference"] == payment_reference:
                    return None
                if (
                    purchaser_id is not None
                    and grant["purchaser_id"] == purchaser_id
                    and grant["status"] == "completed"
                ):
                    return None
            row_id = len(self.lifetime_grants) + 1
            self.lifetime_grants.append(
                {
                    "id": row_id,
                    "purchaser_id": purchaser_id,
                    "payment_reference": payment_reference,
                    "status": status,
                }
            )
            return row_id
        if "FROM lifetime_grants" in sql:
            purchaser_id, status = args
            return any(
                g["purchaser_id"] == purchaser_id and g["status"] == status
                for g in self.lifetime_grants
            )
        raise AssertionError(f"unexpected fetchval: {sql}")

    async def fetch(self, sql, *args):
        self.statements.append(sql)
        if "FROM purchase_records" in sql:
            purchaser_id, status = args
            item_ids = {
                r["content_item_id"]
                for r in self.purchase_records
                if r["purchaser_id"] == purchaser_id and r["status"] == status
            }
            return [{"content_item_id": item_id} for item_id in sorted(item_ids)]
        raise AssertionError(f"unexpected fetch: {sql}")


class FakePool:
    def __init__(self, conn: FakeConnection):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


@pytest.fixture
def db(monkeypatch) -> FakeConnection:
    """Route catalog and ledger queries to a fresh FakeConnection."""
    conn = FakeConnection()
    pool = FakePool(conn)

    async def fake_get_pool():
        return pool

    monkeypatch.setattr("gallery.payments.catalog.get_pool", fake_get_pool)
    monkeypatch.setattr("gallery.payments.ledger.get_pool", fake_get_pool)
    return conn
