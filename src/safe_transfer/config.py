"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a setting has the wrong type, the app fails fast with a
clear error message.

Usage:
    from safe_transfer.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the SafeTransfer escrow engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://safetransfer:safetransfer_dev"
        "@localhost:5432/safe_transfer"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_sequence_prefix: str = "sequence"

    # --- Identifiers ---
    deal_id_prefix: str = "ST"
    payment_id_prefix: str = "PAY"
    id_sequence_width: int = 8

    # --- Payments ---
    default_gateway_provider: Literal["razorpay", "payu", "ccavenue"] = "razorpay"
    payment_max_retries: int = 3
    retry_base_delay_seconds: int = 300  # 5 minutes
    retry_max_delay_seconds: int = 21600  # 6 hours

    # --- Concurrency ---
    # Optimistic-lock attempts per transition before ConcurrencyConflict.
    concurrency_max_attempts: int = 5

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
