"""
Configuration settings for the Storefront backend.
Loads from environment variables with validation.
"""

from enum import Enum

from pydantic_settings import BaseSettings
from functools import lru_cache


class StatsPolicy(str, Enum):
    """When an order is counted in the owner's purchase statistics."""
    OPTIMISTIC = "optimistic"  # at order creation
    CONFIRMED = "confirmed"    # when the online payment completes (cod: at creation)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Storefront API"
    DEBUG: bool = False
    FRONTEND_URL: str = "http://localhost:5173"
    SECRET_KEY: str  # Signs admin session tokens

    # Database
    DATABASE_URL: str
    REDIS_URL: str | None = None  # Enables Idempotency-Key support on checkout

    # Clerk (external identity)
    CLERK_SECRET_KEY: str | None = None
    CLERK_WEBHOOK_SECRET: str | None = None
    CLERK_JWT_KEY: str | None = None  # PEM public key for networkless verification
    CLERK_JWKS_URL: str | None = None
    CLERK_API_URL: str = "https://api.clerk.com/v1"

    # Razorpay (payment gateway)
    RAZORPAY_KEY_ID: str | None = None
    RAZORPAY_KEY_SECRET: str | None = None
    RAZORPAY_WEBHOOK_SECRET: str | None = None
    RAZORPAY_API_URL: str = "https://api.razorpay.com/v1"
    GATEWAY_TIMEOUT_SECONDS: float = 15.0

    # Transactional email
    EMAIL_API_KEY: str | None = None
    EMAIL_API_URL: str = "https://api.sendgrid.com/v3/mail/send"
    EMAIL_FROM: str = "no-reply@storefront.local"

    # Reconciliation
    USER_STATS_POLICY: StatsPolicy = StatsPolicy.OPTIMISTIC
    DEFAULT_CURRENCY: str = "INR"

    def validate_production_settings(self):
        """Validate critical settings for production deployment."""
        missing = [
            name for name in ("RAZORPAY_KEY_SECRET", "RAZORPAY_WEBHOOK_SECRET", "CLERK_WEBHOOK_SECRET")
            if not getattr(self, name)
        ]
        if missing:
            raise ValueError(
                f"{', '.join(missing)} must be set in production. "
                "Set DEBUG=true to run without them locally."
            )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings loader with production validation."""
    settings = Settings()
    # Validate critical settings when not in debug mode
    if not settings.DEBUG:
        settings.validate_production_settings()
    return settings
