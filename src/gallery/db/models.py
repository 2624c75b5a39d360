"""Table-name constants and column-value enums."""

from enum import Enum


class Table:
    """Database table names."""

    CONTENT_ITEMS = "content_items"
    PURCHASE_RECORDS = "purchase_records"
    LIFETIME_GRANTS = "lifetime_grants"
    SCHEMA_MIGRATIONS = "schema_migrations"


class PaymentStatus(str, Enum):
    """Status of a PurchaseRecord or LifetimeGrant.

    Records are only ever written as COMPLETED; PENDING and FAILED are kept
    so refunds and disputes can be added without a schema change.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PurchaseType(str, Enum):
    """Purchase type carried in provider metadata."""

    SINGLE = "single"
    LIFETIME = "lifetime"


class IntentMode(str, Enum):
    """Request type accepted by POST /create-payment-intent."""

    SINGLE_EMBEDDED = "single_embedded"
    SINGLE_REDIRECT = "single_redirect"
    LIFETIME = "lifetime"
