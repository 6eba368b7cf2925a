"""Application settings and configuration."""

import sys

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="NEXUS_",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "nexus-rewards"
    env: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"  # console or json
    allowed_origins: str = "http://localhost:3000"
    public_base_url: str = "http://localhost:3000"

    # Database
    database_url: str = Field(
        default="sqlite:///./nexus.db",
        description="Database connection URL",
    )
    db_timeout_seconds: float = Field(
        default=10.0,
        description="Upper bound for waiting on a connection or a write lock",
    )

    # Referral
    referral_max_attempts: int = Field(
        default=3,
        description="Attempts for an optimistic-concurrency conflict before giving up",
    )


# Global settings instance
settings = Settings()

# ── Production sanity checks ─────────────────────────────────────────
if settings.env == "production" and settings.database_url.startswith("sqlite"):
    print(
        "\n❌  FATAL: NEXUS_DATABASE_URL points to SQLite in production.\n"
        "   Configure a PostgreSQL URL instead.\n",
        file=sys.stderr,
    )
    sys.exit(1)
