"""
Application configuration using Pydantic Settings.

Configuration values can be set via environment variables or .env file.
All durations are expressed in seconds.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    APP_NAME: str = "FleetSync"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    DEV_MODE: bool = False
    HOST: str = "127.0.0.1"
    PORT: int = 8600

    # Device store (local persistence that survives restarts)
    DATABASE_URL: str = "sqlite:///./data/fleetsync_device.db"

    # Remote record service; empty means the engine runs purely offline
    SYNC_ENDPOINT_URL: str = ""

    # Session lifecycle
    IDLE_TIMEOUT_SECONDS: float = 30 * 60
    MAX_SESSION_SECONDS: float = 12 * 60 * 60
    ACTIVITY_WRITE_INTERVAL_SECONDS: float = 1.0
    SESSION_CHECK_INTERVAL_SECONDS: float = 60.0

    # Revalidating cache
    CACHE_TTL_SECONDS: float = 5 * 60
    MIN_MANUAL_REFRESH_SECONDS: float = 15.0
    HISTORY_POLL_INTERVAL_SECONDS: float = 5 * 60

    # Offline mutation queue
    QUEUE_SEND_TIMEOUT_SECONDS: float = 15.0
    QUEUE_INTER_ITEM_DELAY_SECONDS: float = 1.0

    # Notification aggregator
    NOTIFICATION_POLL_INTERVAL_SECONDS: float = 60.0
    ALERT_MAX_AGE_SECONDS: float = 24 * 60 * 60
    MAX_NOTIFICATIONS: int = 50

    # Rate limiting configuration for the local control API
    rate_limit_session_endpoints: str = "10/minute"
    rate_limit_refresh_endpoints: str = "30/minute"

    # Optional Redis URL for distributed rate limiting
    redis_url: Optional[str] = None


# Global settings instance
settings = Settings()
