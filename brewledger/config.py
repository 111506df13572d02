"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. This keeps secrets (JWT key, point-of-sale access token, webhook
signature key) out of source code.

Pydantic Settings automatically:
  1. Reads from environment variables (highest priority)
  2. Falls back to .env file values
  3. Uses defaults defined here (lowest priority)

Two layers live here:

  - Settings: the flat, process-wide environment view. Imported by the
    database, security and logging modules.
  - PosPlatformConfig: an immutable value describing the external
    point-of-sale platform. It is built ONCE at startup from Settings and
    handed to the platform client, the order mirror and the reconciler.
    Those components never reach back into `settings` on their own, which
    is what lets the tests run them against a fake platform.

Usage:
    from brewledger.config import settings, PosPlatformConfig
    pos_config = PosPlatformConfig.from_settings(settings)
"""

from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the BrewLedger API.

    Required fields (no defaults) MUST be set in .env or environment:
      - SECRET_KEY: Used to sign JWT tokens
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "BrewLedger API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "local"
    LOG_LEVEL: str = "INFO"

    # --- Database ---
    # SQLite for MVP; swap to PostgreSQL connection string for production
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/brewledger.db"

    # --- Authentication ---
    # REQUIRED: no default, the deployment must set a real secret
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]

    # --- Credit transfers (SMS gift codes) ---
    CREDIT_TRANSFER_TTL_HOURS: int = 24
    CREDIT_TRANSFER_CODE_LENGTH: int = 6

    # --- External point-of-sale platform ---
    POS_ENABLED: bool = True
    POS_BASE_URL: str = "https://connect.squareupsandbox.com/v2"
    POS_ACCESS_TOKEN: str = ""
    POS_LOCATION_ID: str = ""
    POS_API_VERSION: str = "2023-12-13"
    POS_CURRENCY: str = "AUD"
    POS_WEBHOOK_SIGNATURE_KEY: str = ""
    # Public URL the platform posts webhooks to; part of the signed payload
    POS_WEBHOOK_URL: str = ""
    POS_TIMEOUT_SECONDS: float = 10.0
    POS_MAX_ATTEMPTS: int = 2
    POS_REFERENCE_PREFIX: str = "bs"
    POS_MERCHANT_LABEL: str = "Bean Stalker"
    # "EXTERNAL" records the payment as settled outside the platform
    POS_PAYMENT_SOURCE_ID: str = "EXTERNAL"
    POS_POLL_LOOKBACK_HOURS: int = 24

    # --- Background mirroring ---
    # Small delay lets the order-creating transaction commit first
    MIRROR_DELAY_SECONDS: float = 0.1
    MIRROR_RETRY_DELAY_SECONDS: float = 2.0
    MIRROR_MAX_ATTEMPTS: int = 3


class PosPlatformConfig(BaseModel):
    """
    Immutable description of the external point-of-sale platform.

    Built once in the application lifespan and injected wherever the
    platform is contacted. `is_configured` is False when no access token
    or location is set, in which case mirroring and polling are skipped
    with a warning instead of failing.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    base_url: str
    access_token: str = ""
    location_id: str = ""
    api_version: str = "2023-12-13"
    currency: str = "AUD"
    webhook_signature_key: str = ""
    webhook_url: str = ""
    timeout_seconds: float = 10.0
    max_attempts: int = 2
    reference_prefix: str = "bs"
    merchant_label: str = "Bean Stalker"
    payment_source_id: str = "EXTERNAL"
    poll_lookback_hours: int = 24

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.access_token) and bool(self.location_id)

    @classmethod
    def from_settings(cls, source: Settings) -> "PosPlatformConfig":
        return cls(
            enabled=source.POS_ENABLED,
            base_url=source.POS_BASE_URL.rstrip("/"),
            access_token=source.POS_ACCESS_TOKEN,
            location_id=source.POS_LOCATION_ID,
            api_version=source.POS_API_VERSION,
            currency=source.POS_CURRENCY,
            webhook_signature_key=source.POS_WEBHOOK_SIGNATURE_KEY,
            webhook_url=source.POS_WEBHOOK_URL,
            timeout_seconds=source.POS_TIMEOUT_SECONDS,
            max_attempts=max(1, source.POS_MAX_ATTEMPTS),
            reference_prefix=source.POS_REFERENCE_PREFIX,
            merchant_label=source.POS_MERCHANT_LABEL,
            payment_source_id=source.POS_PAYMENT_SOURCE_ID,
            poll_lookback_hours=source.POS_POLL_LOOKBACK_HOURS,
        )


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
