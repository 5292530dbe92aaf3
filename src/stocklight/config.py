"""Configuration management for Stocklight."""

from __future__ import annotations

import logging
from functools import lru_cache
from urllib.parse import quote_plus

import structlog
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stocklight.core.models import DedupKey, ReferenceStatusMode, ReplenishmentPolicy

logger = structlog.get_logger()


class DatabaseSettings(BaseSettings):
    """PostgreSQL database configuration."""

    model_config = SettingsConfigDict(
        env_prefix="POSTGRES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = "localhost"
    port: int = 5432
    database: str = "stocklight"
    user: str = "stocklight"
    password: str = ""
    sslmode: str = "prefer"

    @property
    def conninfo(self) -> str:
        """libpq connection string for psycopg."""
        user_encoded = quote_plus(self.user)
        password_encoded = quote_plus(self.password)

        return (
            f"postgresql://{user_encoded}:{password_encoded}"
            f"@{self.host}:{self.port}/{self.database}"
            f"?sslmode={self.sslmode}"
        )


class EngineSettings(BaseSettings):
    """Stock health thresholds and auto-ticket policy."""

    model_config = SettingsConfigDict(
        env_prefix="ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Pinned reference warehouse; when unset the marker lookup is used
    reference_warehouse_id: int | None = None
    reference_marker: str = "main"

    # Percentages of the reference quantity, inclusive upper bounds
    red_threshold: float = 10
    orange_threshold: float = 60
    urgent_threshold: float = 20

    lead_time_days: int = 5

    reference_status_mode: ReferenceStatusMode = ReferenceStatusMode.ALWAYS_GREEN
    reference_baseline: int = 1000

    replenishment_policy: ReplenishmentPolicy = ReplenishmentPolicy.FULL_REFERENCE
    fixed_replenishment_qty: int = 100
    replenishment_fraction: float = 0.1

    dedup_key: DedupKey = DedupKey.WAREHOUSE_ID
    system_user: str = "auto-system"

    @model_validator(mode="after")
    def _check_thresholds(self) -> "EngineSettings":
        if self.red_threshold < 0 or self.urgent_threshold < 0:
            raise ValueError("thresholds must be non-negative")
        if self.red_threshold > self.orange_threshold:
            raise ValueError(
                f"red_threshold ({self.red_threshold}) must not exceed "
                f"orange_threshold ({self.orange_threshold})"
            )
        if self.reference_baseline <= 0:
            raise ValueError("reference_baseline must be positive")
        if self.lead_time_days < 0:
            raise ValueError("lead_time_days must be non-negative")
        return self


class InventorySettings(BaseSettings):
    """Inventory mutation settings."""

    model_config = SettingsConfigDict(
        env_prefix="INVENTORY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Warehouse that external orders are shipped from
    order_warehouse_id: int | None = None


class UserSettings(BaseSettings):
    """User identification settings for dev/prod environments."""

    model_config = SettingsConfigDict(
        env_prefix="USER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # For local development - set USER_EMAIL in .env
    email: str = ""
    name: str = ""
    # JSON list, e.g. USER_ADMIN_EMAILS='["ops@example.com"]'
    admin_emails: list[str] = []
    # Home warehouse per email for non-admins, e.g. '{"clerk@example.com": 2}'
    warehouse_assignments: dict[str, int] = {}


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    @property
    def database(self) -> DatabaseSettings:
        """Get PostgreSQL settings."""
        return DatabaseSettings()

    @property
    def engine(self) -> EngineSettings:
        """Get stock health engine settings."""
        return EngineSettings()

    @property
    def inventory(self) -> InventorySettings:
        """Get inventory mutation settings."""
        return InventorySettings()

    @property
    def user(self) -> UserSettings:
        """Get user identification settings."""
        return UserSettings()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: str | None = None) -> None:
    """Configure structlog to drop events below the configured level."""
    level_name = (level or get_settings().log_level).upper()
    numeric = logging.getLevelName(level_name)
    if not isinstance(numeric, int):
        logger.warning("unknown_log_level", log_level=level_name)
        numeric = logging.INFO

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
    )
