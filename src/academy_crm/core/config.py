"""Application configuration via Pydantic Settings.

All configuration is loaded from environment variables following 12-factor principles.
"""

import re
from datetime import timedelta

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        description="Async SQLAlchemy connection string (postgresql+asyncpg://...)",
    )
    database_schema: str | None = Field(
        default=None,
        description="PostgreSQL schema for isolated environments (e.g., pr_42)",
    )

    @field_validator("database_schema")
    @classmethod
    def validate_database_schema(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not re.match(r"^[a-z_][a-z0-9_]{0,62}$", v):
            msg = "Invalid database_schema: must match ^[a-z_][a-z0-9_]{0,62}$"
            raise ValueError(msg)
        return v

    # Lead import
    import_max_rows: int = Field(
        default=5000,
        description="Maximum number of spreadsheet rows stored per import job",
        gt=0,
    )
    import_preview_size: int = Field(
        default=25,
        description="Number of rows returned with a preview for display",
        gt=0,
    )
    import_commit_batch_size: int = Field(
        default=100,
        description="Rows committed per database transaction during lead commit",
        gt=0,
    )
    import_max_file_size_mb: int = Field(
        default=20,
        description="Maximum spreadsheet upload size in megabytes",
        gt=0,
    )
    import_list_max_page_size: int = Field(
        default=50,
        description="Upper bound on the page size of import job listings",
        gt=0,
        le=500,
    )
    import_commit_claim_ttl_seconds: int = Field(
        default=600,
        description="Seconds after which an unrefreshed commit claim on a job may be taken over",
        gt=0,
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )
    log_json: bool = Field(
        default=False,
        description="Write stderr logs as JSON lines instead of the human-readable format",
    )

    # CORS
    cors_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins (must be explicitly configured)",
    )

    # Environment
    environment: str = Field(
        default="production",
        description="Deployment environment name (e.g. production, dev, staging)",
    )

    # API
    api_v1_prefix: str = Field(
        default="/api/v1",
        description="API version prefix",
    )

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        if not self.cors_origins.strip():
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def import_max_file_size_bytes(self) -> int:
        """Upload size limit in bytes."""
        return self.import_max_file_size_mb * 1024 * 1024

    @property
    def import_commit_claim_ttl(self) -> timedelta:
        return timedelta(seconds=self.import_commit_claim_ttl_seconds)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()  # type: ignore[call-arg]
