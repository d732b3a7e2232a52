"""Application configuration via environment variables."""

from decimal import Decimal
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./creator_payouts.db"
    log_level: str = "INFO"

    # Wise (primary transfer provider)
    wise_api_url: str = "https://api.sandbox.transferwise.tech"
    wise_api_token: str = ""
    wise_profile_id: str = ""
    wise_environment: str = "sandbox"
    wise_webhook_secret: str = ""
    webhook_signature_header: str = "X-Signature-SHA256"
    provider_timeout_s: float = 20.0

    # Fernet key used for field-level encryption of bank details
    field_encryption_key: str = ""

    # Payout policy
    default_source_currency: str = "USD"
    platform_fee_percent: Decimal = Decimal("0")  # 0 = pass-through withdrawal
    quote_refresh_margin_s: int = 60
    reconcile_stale_after_minutes: int = 30

    # Batch + retry
    batch_max_concurrent: int = 5
    retry_max_attempts: int = 3
    retry_base_delay: float = 2.0
    retry_max_delay: float = 30.0

    # Mock provider (local development / demo)
    mock_provider: bool = True
    mock_failure_rate: float = 0.0
    mock_latency_ms: int = 100  # Simulated provider latency

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @field_validator("wise_environment")
    @classmethod
    def _check_environment(cls, value: str) -> str:
        env = value.strip().lower()
        if env not in ("sandbox", "live"):
            raise ValueError(f"wise_environment must be 'sandbox' or 'live', got {value!r}")
        return env

    @field_validator("wise_webhook_secret")
    @classmethod
    def _check_webhook_secret(cls, value: str) -> str:
        if value and len(value) < 32:
            raise ValueError("wise_webhook_secret must be at least 32 characters")
        return value

    @field_validator("platform_fee_percent")
    @classmethod
    def _check_fee(cls, value: Decimal) -> Decimal:
        if value < 0 or value >= 100:
            raise ValueError("platform_fee_percent must be in [0, 100)")
        return value

    @property
    def webhook_secret(self) -> Optional[str]:
        return self.wise_webhook_secret or None


settings = Settings()
