"""
Application configuration using pydantic-settings.
Loads from environment variables / .env file.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "wathaci-payments"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # Public origin used for gateway callback URLs when the request has none
    app_url: str = "https://wathaci.com"

    # API Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Postgres (Supabase)
    database_url: str = ""
    db_pool_size: int = 5
    db_max_overflow: int = 10

    # Redis (realtime broadcasts + Celery broker)
    redis_url: str = ""

    # Supabase Auth
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    # Lenco gateway
    lenco_api_url: str = "https://api.lenco.co/access/v2"
    lenco_secret_key: str = ""
    lenco_webhook_secret: str = ""
    lenco_webhook_signature_header: str = "x-lenco-signature"
    gateway_timeout_seconds: float = 10.0

    # Payment rules
    payment_currency: str = "ZMW"
    min_payment_amount: float = 5
    max_payment_amount: float = 1_000_000
    # Amounts above this are assumed to be in minor units already
    minor_unit_threshold: int = 10_000
    minor_unit_factor: int = 100

    # Webhook limits
    webhook_max_body_bytes: int = 32 * 1024
    # 0 disables the created_at staleness check
    webhook_timestamp_tolerance_seconds: int = 0

    # Pending payment sweep
    sweep_pending_after_minutes: int = 15
    sweep_batch_size: int = 50

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
