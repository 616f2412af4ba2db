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
    app_name: str = "confpay"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # API Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Postgres (empty disables database features)
    database_url: str = ""

    # Redis (Celery broker)
    redis_url: str = "redis://localhost:6379/0"

    # OnePay gateway
    onepay_base_url: str = ""
    onepay_app_id: str = ""
    onepay_app_token: str = ""
    onepay_hash_salt: str = ""
    onepay_currency: str = "USD"
    onepay_transaction_redirect_url: str = ""
    onepay_timeout_seconds: float = 15.0

    # Bounded verification loop used by the status endpoint
    payment_verify_budget_seconds: float = 60.0
    payment_verify_interval_seconds: float = 5.0

    # QR credentials
    qr_signing_secret: str = ""
    qr_prefix: str = "APSC2026"
    qr_token_expires_in_days: int = 30

    # Transactional e-mail API
    mail_api_url: str = "https://api.brevo.com/v3/smtp/email"
    mail_api_key: str = ""
    mail_from_name: str = "APSC 2026 Secretariat"
    mail_from_address: str = "noreply@apsc2026.lk"
    mail_reply_to: str = ""
    mail_timeout_seconds: float = 10.0

    # Browser origins allowed by CORS (comma separated)
    cors_origins: str = "https://www.apsc2026.lk"

    # Admin (check-in desk)
    admin_api_key: str = ""

    # Background sweep
    sweep_interval_minutes: int = 10
    finalization_sweep_batch_size: int = 50
    stale_payment_minutes: int = 30

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

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
