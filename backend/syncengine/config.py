"""Application configuration using Pydantic settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str = "postgresql+asyncpg://localhost:5432/syncengine"

    # Shared secret for the trigger surface (x-admin-key header)
    admin_api_key: str | None = None

    # Primary payments provider (Stripe-compatible API)
    payments_primary_api_key: str | None = None
    payments_primary_base_url: str = "https://api.stripe.com/v1"

    # Secondary payments provider (PayPal-compatible reporting API)
    payments_secondary_client_id: str | None = None
    payments_secondary_secret: str | None = None
    payments_secondary_base_url: str = "https://api-m.paypal.com"

    # CRM platform (GoHighLevel-compatible contacts search)
    crm_api_key: str | None = None
    crm_location_id: str | None = None
    crm_base_url: str = "https://services.leadconnectorhq.com"
    crm_api_version: str = "2021-07-28"

    # Messaging platform (ManyChat-compatible subscriber lookup)
    messaging_api_key: str | None = None
    messaging_base_url: str = "https://api.manychat.com"

    # Outbound pacing (requests per second / burst allowance)
    payments_primary_rps: float = 100.0
    payments_primary_burst: int = 5
    payments_secondary_rps: float = 10.0
    payments_secondary_burst: int = 2
    # Kept conservative to avoid provider-side 429 bursts.
    crm_rps: float = 8.0
    crm_burst: int = 2
    messaging_rps: float = 10.0
    messaging_burst: int = 2

    # Pagination
    page_size: int = 100
    max_pages: int = 100
    crm_max_pages: int = 1000
    checkpoint_every_pages: int = 50
    upsert_batch_size: int = 500
    http_timeout_seconds: float = 30.0

    # Chunked jobs (secondary payments history is queried in date windows)
    secondary_chunk_days: int = 30
    secondary_max_chunks_per_invocation: int = 3
    secondary_history_days: int = 3 * 365 - 7
    messaging_lookups_per_run: int = 100
    auto_continue: bool = True

    # Run bookkeeping
    stuck_run_timeout_minutes: int = 30
    sync_run_retention_days: int = 7

    # Scheduler
    scheduler_enabled: bool = True
    payments_poll_interval_minutes: int = 60
    crm_poll_interval_minutes: int = 120
    reconcile_interval_minutes: int = 10
    prune_interval_hours: int = 24
    default_lookback_hours: int = 24

    # API settings
    cors_origins: list[str] = ["*"]  # Restrict in production
    rate_limit_per_minute: int = 30

    # Environment
    debug: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
