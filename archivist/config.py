# archivist/config.py
"""
Centralized configuration with validation.

Uses pydantic-settings to load and validate all environment variables at startup.
Fail fast with clear error messages if required config is missing.
"""

from functools import lru_cache
from typing import ClassVar

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = Field(
        default="sqlite:///./archivist.db",
        description="SQLAlchemy connection URL for policies, archives and tenant records",
    )

    # Application
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment: development, staging, production",
    )

    # Archive storage
    ARCHIVE_BASE_PATH: str = Field(
        default="./archives",
        description="Base directory for archive blobs ({base}/{tenant}/{dataType}/{archiveId}.json)",
    )
    STORAGE_PROVIDER: str = Field(
        default="local",
        description="Primary archive storage provider: local",
    )
    S3_BUCKET: str | None = Field(
        default=None,
        description="Bucket for cloud archive replicas (archival location cloud_storage/both)",
    )
    S3_ENDPOINT_URL: str | None = None
    S3_REGION: str = "us-east-1"

    # Encryption
    ARCHIVE_MASTER_KEY: str | None = Field(
        default=None,
        description="Fernet key wrapping per-archive data keys. Required when a policy encrypts archives.",
    )

    # Immutable audit chain
    IMMUTABLE_LOG_PATH: str = Field(
        default="./logs/immutable",
        description="Directory holding {category}-immutable.log and {category}-chain.json",
    )
    PLATFORM_IMMUTABLE_SECRET: str = Field(
        default="platform-immutable-secret-key",
        description="Shared secret mixed into every chain entry hash",
    )

    # Scheduler
    RETENTION_SCHEDULER_INTERVAL_SECONDS: int = Field(
        default=3600,
        description="Seconds between scheduler passes over due policies",
    )
    RETENTION_LEASE_SECONDS: int = Field(
        default=1800,
        description="Lifetime of a (tenant, dataType) execution lease",
    )
    ARCHIVE_RECONCILE_AFTER_MINUTES: int = Field(
        default=60,
        description="Archives stuck in 'creating' longer than this are reconciled at startup",
    )
    CHAIN_VERIFY_INTERVAL_HOURS: int = Field(
        default=168,
        description="Hours between full immutable chain verifications (weekly by default)",
    )

    # Logging
    LOG_JSON: bool = Field(default=True, description="Emit single-line JSON logs")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")

    DEFAULT_IMMUTABLE_SECRET: ClassVar[str] = "platform-immutable-secret-key"

    @field_validator("DATABASE_URL")
    @classmethod
    def fix_database_url(cls, v: str) -> str:
        """Hosted Postgres hands out postgresql:// but SQLAlchemy needs postgresql+psycopg2://"""
        if v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+psycopg2://", 1)
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def require_real_secret_in_production(self) -> "Settings":
        """The default chain secret is public; production must override it."""
        if (
            self.ENVIRONMENT.lower() == "production"
            and self.PLATFORM_IMMUTABLE_SECRET == self.DEFAULT_IMMUTABLE_SECRET
        ):
            raise ValueError("PLATFORM_IMMUTABLE_SECRET must be set in production")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings. Call at startup to validate config."""
    return Settings()
