"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration for the booking backend."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./roombook.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    run_db_migrations: bool = Field(
        default=True,
        description="Whether the app should create missing database tables on startup.",
    )
    db_pool_timeout: float = Field(default=10.0, description="Seconds to wait for a pooled connection")
    db_statement_timeout: float = Field(
        default=15.0,
        description="Seconds a single statement may block (SQLite busy timeout / PostgreSQL statement_timeout)",
    )
    booking_lock_timeout: float = Field(
        default=10.0, description="Seconds to wait for the per-room booking lock before giving up"
    )

    jwt_secret: str = Field(default="super-secret", description="JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60 * 24, description="Token lifetime in minutes")

    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    default_rate_limit: str = Field(default="60/minute", description="Global rate limiting rule")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")
    room_cache_ttl: int = Field(default=60, description="TTL (s) for cached room detail lookups")
    metrics_enabled: bool = Field(default=True, description="Expose Prometheus metrics on /metrics")
    log_dir: str = Field(default="logs", description="Directory for the HTTP audit log files")

    cancel_policy: Literal["strict", "lenient"] = Field(
        default="strict",
        description="strict: only pending_approval bookings can be cancelled; lenient: approved ones too",
    )
    require_payment: bool = Field(
        default=False,
        description="When enabled, bookings can only be created through a paid checkout session",
    )
    stripe_secret_key: str = Field(default="sk_test_your_test_key", description="Stripe API secret key")
    stripe_webhook_secret: str = Field(default="whsec_your_webhook_secret", description="Stripe webhook signing secret")
    stripe_currency: str = Field(default="aud", description="Currency for checkout sessions")
    frontend_url: str = Field(default="http://localhost:3000", description="Base URL for checkout redirects")

    bootstrap_admin_email: Optional[str] = Field(
        default=None, description="Create a super admin with this email on startup if none exists"
    )
    bootstrap_admin_password: Optional[str] = Field(default=None, description="Password for the bootstrap admin")

    app_port: int = 8000


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
