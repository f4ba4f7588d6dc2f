"""Application configuration"""

from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    API_PREFIX: str = "/api"
    PROJECT_NAME: str = "SeatSync Billing API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Database
    DATABASE_URL: str

    # LemonSqueezy
    # WHY: The provider client refuses to start without an API key and store
    # id, so both are optional here and checked when a client is requested.
    LEMONSQUEEZY_API_KEY: Optional[str] = None
    LEMONSQUEEZY_STORE_ID: Optional[str] = None
    LEMONSQUEEZY_API_URL: str = "https://api.lemonsqueezy.com/v1"
    LEMONSQUEEZY_WEBHOOK_SECRET: Optional[str] = None
    PROVIDER_TIMEOUT_SECONDS: float = 15.0

    # Shared secrets for machine callers
    CRON_SECRET: Optional[str] = None
    INTERNAL_API_TOKEN: Optional[str] = None

    # Seat pricing
    YEARLY_PRICE_PER_SEAT: Decimal = Decimal("12.00")
    SEAT_WRITE_MAX_RETRIES: int = 3

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    PENDING_SYNC_WINDOW_START_HOURS: int = 24
    PENDING_SYNC_WINDOW_END_HOURS: int = 48
    PENDING_CHANGES_INTERVAL_HOURS: int = 6
    RECONCILIATION_HOUR_UTC: int = 3
    RECONCILIATION_DELAY_SECONDS: float = 0.1
    PENDING_SYNC_DELAY_SECONDS: float = 0.1

    # Slack Notifications
    SLACK_WEBHOOK_URL: Optional[str] = None
    SLACK_WEBHOOK_ENABLED: bool = False

    # Email
    RESEND_API_KEY: Optional[str] = None
    ALERT_EMAIL_TO: Optional[str] = None
    ALERT_EMAIL_FROM: str = "SeatSync Alerts <alerts@seatsync.local>"

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    @property
    def provider_configured(self) -> bool:
        """LemonSqueezy calls need an API key and a store id."""
        return bool(self.LEMONSQUEEZY_API_KEY) and bool(self.LEMONSQUEEZY_STORE_ID)

    @property
    def async_database_url(self) -> str:
        """Get async database URL"""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")


settings = Settings()
