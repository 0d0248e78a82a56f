"""Centralized configuration using pydantic-settings.

All configuration is loaded from environment variables and .env files.
For nested settings, use double underscore: PROCESSOR__TIMEOUT_SECONDS=5
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ProcessorBackend(str, Enum):
    """Which payment processor client to build."""

    HTTP = "http"
    SANDBOX = "sandbox"


class Settings(BaseSettings):
    """Cashier settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    app_name: str = Field("dotmac-cashier", description="Application name")
    environment: Environment = Field(Environment.DEVELOPMENT, description="Deployment environment")
    testing: bool = Field(False, description="Testing mode")

    # ============================================================
    # Database Configuration
    # ============================================================

    class DatabaseSettings(BaseModel):
        """Database configuration."""

        url: str = Field(
            "sqlite+aiosqlite:///./cashier.sqlite", description="Async SQLAlchemy database URL"
        )
        pool_size: int = Field(10, description="Connection pool size")
        max_overflow: int = Field(20, description="Max overflow connections")
        pool_timeout: int = Field(30, description="Pool timeout in seconds")
        pool_recycle: int = Field(3600, description="Recycle connections after seconds")
        pool_pre_ping: bool = Field(True, description="Test connections before use")
        echo: bool = Field(False, description="Echo SQL statements")

        @property
        def is_sqlite(self) -> bool:
            return self.url.startswith("sqlite")

    database: DatabaseSettings = DatabaseSettings()  # type: ignore[call-arg]

    # ============================================================
    # Payment Processor
    # ============================================================

    class ProcessorSettings(BaseModel):
        """Remote payment processor configuration."""

        backend: ProcessorBackend = Field(ProcessorBackend.SANDBOX, description="Client backend")
        api_key: str = Field("", description="Processor private API key")
        api_version: str = Field("2.0.0", description="Processor API version header")
        base_url: str = Field("https://api.conekta.io", description="Processor API base URL")
        timeout_seconds: float = Field(10.0, gt=0, description="Per-request timeout")
        max_retries: int = Field(
            3, ge=0, description="Retries after the first attempt on transient network failure"
        )
        retry_backoff_min: float = Field(0.5, ge=0, description="Minimum backoff in seconds")
        retry_backoff_max: float = Field(8.0, ge=0, description="Maximum backoff in seconds")
        webhook_secret: str | None = Field(None, description="Webhook signing secret")
        webhook_tolerance_seconds: int = Field(
            300, ge=0, description="Accepted age of a webhook signature timestamp"
        )

    processor: ProcessorSettings = ProcessorSettings()  # type: ignore[call-arg]

    # ============================================================
    # Billing
    # ============================================================

    class BillingSettings(BaseModel):
        """Billing behaviour."""

        currency: str = Field("USD", description="Default ISO 4217 currency code")
        locale: str = Field("en_US", description="Locale used to format amounts")
        stale_write_retries: int = Field(
            3, ge=1, description="Reapply attempts when a subscription row changed underneath"
        )

        @field_validator("currency")
        @classmethod
        def upper_currency(cls, v: str) -> str:
            return v.upper()

    billing: BillingSettings = BillingSettings()  # type: ignore[call-arg]

    # ============================================================
    # Observability
    # ============================================================

    class ObservabilitySettings(BaseModel):
        """Logging configuration."""

        log_level: LogLevel = Field(LogLevel.INFO, description="Log level")
        log_format: str = Field("json", description="Log format (json or console)")

    observability: ObservabilitySettings = ObservabilitySettings()  # type: ignore[call-arg]

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str | Environment) -> str | Environment:
        if isinstance(v, str):
            return Environment(v.lower())
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        return self.testing or self.environment == Environment.TEST


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get global settings instance (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore[call-arg]
    return _settings


def reset_settings() -> None:
    """Reset settings (mainly for testing)."""
    global _settings
    _settings = None
