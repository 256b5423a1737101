"""Application configuration from environment variables."""

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_name: str = "Lesson Booking Engine"
    debug: bool = True
    secret_key: str = "dev-secret-change-in-production"
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Database
    database_url: str = "postgresql+asyncpg://booking:booking@db:5432/booking"
    database_echo: bool = False
    auto_create_tables: bool = True

    # Redis (Celery broker)
    redis_url: str = "redis://redis:6379/0"

    # Auth
    access_token_expire_minutes: int = 60
    jwt_algorithm: str = "HS256"

    # Email / SMTP
    smtp_host: str = "localhost"
    smtp_port: int = 1025
    smtp_from: str = "noreply@lessonbooking.io"
    notifications_enabled: bool = True

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_webhook_tolerance_seconds: int = 300
    payment_provider_timeout_seconds: float = 10.0

    # Concurrency / idempotency
    optimistic_max_attempts: int = 5
    webhook_event_retention_days: int = 30

    # Pricing (amounts are integer minor units of the currency)
    default_currency: str = "JPY"
    tax_rate: float = 0.10
    platform_fee_rate: float = 0.05
    payment_fee_rate: float = 0.036

    # Cancellation policy, refund rate in percent
    refund_rate_24h_plus: int = 100
    refund_rate_24h_minus: int = 50
    refund_rate_same_day: int = 0
    refund_rate_provider: int = 100

    model_config = {"env_prefix": "BOOKING_", "env_file": ".env", "extra": "ignore"}

    @field_validator(
        "refund_rate_24h_plus",
        "refund_rate_24h_minus",
        "refund_rate_same_day",
        "refund_rate_provider",
    )
    @classmethod
    def rate_is_percentage(cls, v: int) -> int:
        if not 0 <= v <= 100:
            raise ValueError("refund rate must be between 0 and 100")
        return v


settings = Settings()
