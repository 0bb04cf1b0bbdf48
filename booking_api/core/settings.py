"""Configuration and environment settings for the booking API."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings for the booking API."""

    environment: str = "development"
    log_level: str = "INFO"
    server_host: str = "127.0.0.1"
    server_port: int = 3001
    frontend_url: str = "http://localhost:3000"
    cors_origins: list[str] = ["http://localhost:3000"]

    # PhonePe standard checkout
    phonepe_client_id: str = ""
    phonepe_client_secret: str = ""
    phonepe_client_version: int = 1
    phonepe_env: Literal["SANDBOX", "PRODUCTION"] = "SANDBOX"
    phonepe_webhook_username: str = ""
    phonepe_webhook_password: str = ""
    phonepe_timeout_seconds: float = 10.0

    # Manual UPI fallback
    merchant_upi_id: str = "merchant@upi"
    merchant_name: str = "Portfolio Consultations"

    # SMTP
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = ""
    business_email: str = ""

    otp_expiry_minutes: int = 10

    # Reconciliation
    retry_limit: int = 10
    retention_hours: int = 24
    reconcile_interval_seconds: float = 30.0
    reconcile_concurrency: int = 1
    processor_enabled: bool = True

    # Per-client request limits
    rate_limit_enabled: bool = True

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def sender_address(self) -> str:
        """Address used in the From header; falls back to the SMTP login."""
        return self.email_from or self.smtp_username

    @property
    def owner_address(self) -> str:
        """Inbox that receives business notifications."""
        return self.business_email or self.sender_address


@lru_cache
def get_settings() -> Settings:
    """Return the cached application settings."""
    return Settings()
