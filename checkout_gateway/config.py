from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CheckoutSettings(BaseSettings):
    """
    Configuration for the checkout gateway.

    Everything here is opaque to the fulfillment pipeline: the app factory
    reads these values once and hands the built clients (Stripe, Mongo, mail
    provider) to the pipeline. Nothing below is read at import time.
    """

    # Environment
    ENVIRONMENT: str = "development"

    # Stripe
    STRIPE_SECRET_KEY: str
    STRIPE_WEBHOOK_SECRET: str
    STRIPE_API_VERSION: str = "2024-06-20"
    # Bounded so verification-to-ack never waits on a slow provider
    STRIPE_TIMEOUT_SECONDS: float = Field(10.0, gt=0)
    STRIPE_MAX_NETWORK_RETRIES: int = Field(2, ge=0)
    WEBHOOK_TOLERANCE_SECONDS: int = Field(300, gt=0)

    # Database connections
    MONGODB_URI: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "checkout"
    MONGODB_TIMEOUT_MS: int = 5000

    # Mail
    MAIL_PROVIDER: str = "smtp"  # smtp | mailersend | none
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 465
    SMTP_USER: Optional[str] = None
    SMTP_PASS: Optional[str] = None
    SMTP_TIMEOUT_SECONDS: float = 10.0
    MAILERSEND_API_KEY: Optional[str] = None
    MAIL_FROM: Optional[str] = None
    MAIL_FROM_NAME: str = "Shop"
    OWNER_EMAIL: Optional[str] = None
    SHOP_NAME: str = "Shop"
    EMAIL_NOTIFICATIONS_ENABLED: bool = True

    # Server Configuration
    SERVICE_NAME: str = "checkout-gateway"
    SERVICE_VERSION: str = "1.0.0"
    SERVICE_HOST: str = "0.0.0.0"
    SERVICE_PORT: int = 4242

    # Allow unrelated keys in a shared .env
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="allow")

    @property
    def sender_address(self) -> Optional[str]:
        return self.MAIL_FROM or self.SMTP_USER


@lru_cache()
def get_settings() -> CheckoutSettings:  # pragma: no cover
    return CheckoutSettings()
