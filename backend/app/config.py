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
    database_url: str = "postgresql+asyncpg://localhost:5432/civic_issues"

    # Notification queue
    notification_max_retries: int = 3
    notification_retry_delay_seconds: float = 5.0  # Linear backoff: 5s, 10s, 15s
    notification_poll_interval_seconds: float = 1.0

    # Duplicate detection
    duplicate_radius_meters: float = 100.0
    duplicate_lookback_days: int = 30
    duplicate_max_candidates: int = 10
    duplicate_similarity_threshold: float = 0.5

    # Nearby search
    nearby_default_radius_meters: float = 5000.0
    nearby_max_radius_meters: float = 50000.0

    # Scheduled jobs
    sla_check_interval_minutes: int = 15
    daily_digest_hour: int = 8  # UTC

    # E-mail channel (no host configured means log-only mode)
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    email_from_name: str = "Civic Issue Reporter"
    email_from_address: str = "no-reply@civic-issues.local"

    # SMS / push gateways
    sms_gateway_url: str | None = None
    push_gateway_url: str | None = None
    gateway_api_key: str | None = None
    gateway_timeout_seconds: float = 10.0

    # Links rendered into notification bodies
    frontend_url: str = "http://localhost:3000"
    admin_url: str = "http://localhost:3001"

    # API settings
    api_v1_prefix: str = "/api/v1"
    cors_origins: list[str] = ["*"]  # Restrict in production
    rate_limit_per_minute: int = 60

    # Environment
    debug: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
