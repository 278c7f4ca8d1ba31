"""Application configuration."""

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Loads and validates application settings from the environment."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Tariff fallback
    DEFAULT_UNIT_PRICE: Decimal = Decimal("300")
    DEFAULT_TARIFF_NAME: str = "Default flat tariff"

    # Bill generation
    BILLING_DUE_DAYS: int = 14
    BILLING_BATCH_SIZE: int = 100
    BILLING_WORKER_CONCURRENCY: int = 4
    BILLING_INTER_ITEM_DELAY_SECONDS: float = 0.1
    BILLING_GENERATION_DAY: int = 1

    # Bulk meters
    BULK_METER_REQUIRE_FULL_ALLOCATION: bool = True

    # Late fees
    LATE_FEES_ENABLED: bool = True
    LATE_FEE_STRATEGY: str = "percentage"  # "percentage" or "flat"
    LATE_FEE_PERCENTAGE: Decimal = Decimal("5")
    LATE_FEE_FLAT_AMOUNT: Decimal = Decimal("50")
    LATE_FEE_MINIMUM: Decimal = Decimal("50")
    LATE_FEE_MAXIMUM: Decimal = Decimal("5000")
    LATE_FEE_GRACE_PERIOD_DAYS: int = 14

    # Reconciliation
    RECONCILIATION_MIN_ALLOCATION: Decimal = Decimal("0.01")
    RECONCILIATION_BATCH_SIZE: int = 100
    RECONCILIATION_WHO_CAN_REVERSE: str = "admin_only"
    RECONCILIATION_REVERSAL_TIME_LIMIT_HOURS: int | None = 24

    # Queued jobs
    JOB_RETRY_ATTEMPTS: int = 3
    JOB_RETRY_BACKOFF_SECONDS: float = 60
    JOB_RETRY_STRATEGY: str = "fixed"  # "fixed" or "linear"
    JOB_TIMEOUT_SECONDS: float = 600
    JOB_REENQUEUE_DELAY_SECONDS: float = 300

    # Idempotency keys for queued bill generation
    IDEMPOTENCY_TTL_SECONDS: int = 3600


settings = Settings()
