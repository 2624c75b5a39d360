"""Application configuration schema and validation."""

from typing import Literal

from pydantic import Field, PostgresDsn, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Application configuration loaded from environment variables.

    Provider keys, the webhook signing secret and database credentials are
    required; a missing or empty value fails validation when the config is
    first loaded at boot.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    env: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        description="Application environment",
    )
    db_dsn: PostgresDsn = Field(
        ...,
        description="PostgreSQL connection string of the managed data store",
    )
    db_service_key: SecretStr = Field(
        ...,
        description="Service credential for the managed data store",
    )
    db_pool_min: int = Field(
        default=1,
        ge=1,
        description="Minimum database connection pool size",
    )
    db_pool_max: int = Field(
        default=10,
        ge=1,
        description="Maximum database connection pool size",
    )
    stripe_secret_key: SecretStr = Field(
        ...,
        description="Stripe secret API key",
    )
    stripe_publishable_key: SecretStr = Field(
        ...,
        description="Stripe publishable key handed to the client library",
    )
    stripe_webhook_secret: SecretStr = Field(
        ...,
        description="Stripe webhook signing secret",
    )
    currency: str = Field(
        default="gbp",
        min_length=3,
        max_length=3,
        description="ISO currency code for every charge",
    )
    lifetime_price: int = Field(
        default=4900,
        gt=0,
        description="Fixed lifetime-access price in minor currency units",
    )
    price_tolerance: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Accepted |requested - canonical| divergence in minor units",
    )
    upsell_delay_ms: int = Field(
        default=5000,
        ge=0,
        description="Delay before the lifetime upsell is offered after a single purchase",
    )
    site_origin: str = Field(
        default="http://localhost:5173",
        description="Fallback origin for checkout success/cancel URLs",
    )
    server_host: str = Field(
        default="0.0.0.0",
        description="Bind address for the HTTP server",
    )
    server_port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Port for the HTTP server",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator(
        "db_service_key",
        "stripe_secret_key",
        "stripe_publishable_key",
        "stripe_webhook_secret",
    )
    @classmethod
    def validate_secret_present(cls, v: SecretStr) -> SecretStr:
        """Reject empty secrets so misconfiguration fails at startup."""
        if not v.get_secret_value().strip():
            raise ValueError("secret must not be empty")
        return v

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.lower()

    @field_validator("db_pool_max")
    @classmethod
    def validate_pool_max(cls, v: int, info) -> int:
        """Ensure pool_max >= pool_min."""
        if "db_pool_min" in info.data and v < info.data["db_pool_min"]:
            raise ValueError("db_pool_max must be >= db_pool_min")
        return v


_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get or create the singleton AppConfig instance."""
    global _config
    if _config is None:
        _config = AppConfig()
    return _config


def reset_config() -> None:
    """Drop the cached AppConfig so the next get_config() reloads it."""
    global _config
    _config = None
