"""
Application configuration using Pydantic Settings.

Transport switching (push stream vs. interval polling) is controlled by the
UPDATE_TRANSPORT variable.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ===========================================
    # General
    # ===========================================
    LOG_LEVEL: str = "INFO"

    # ===========================================
    # Request Layer
    # ===========================================
    API_BASE_URL: str = "http://localhost:3000"
    REQUEST_TIMEOUT_SECONDS: float = 10.0

    # ===========================================
    # Local Cache
    # ===========================================
    CACHE_DATABASE_URL: str = "sqlite+aiosqlite:///./chatsync_cache.db"
    CACHE_ECHO_SQL: bool = False

    # ===========================================
    # Update Source
    # ===========================================
    # "push": long-lived event stream, "poll": periodic re-fetch
    UPDATE_TRANSPORT: Literal["push", "poll"] = "push"
    SUBSCRIBE_PATH: str = "/api/subscribe"
    POLL_INTERVAL_SECONDS: float = 3.0

    RECONNECT_DELAY_SECONDS: float = 5.0
    RECONNECT_BACKOFF: Literal["fixed", "exponential"] = "fixed"
    RECONNECT_MAX_DELAY_SECONDS: float = 60.0

    # Server pings every 15s; silence longer than this is a dead stream.
    KEEPALIVE_TIMEOUT_SECONDS: float = 45.0

    # Consecutive failed reconnects before the connection is reported degraded
    DEGRADED_AFTER_FAILURES: int = 3

    # ===========================================
    # Read receipts
    # ===========================================
    READ_VISIBILITY_THRESHOLD: float = 0.5
    READ_DEBOUNCE_SECONDS: float = 0.0

    # ===========================================
    # Display
    # ===========================================
    DISPLAY_TIMEZONE: str = "UTC"

    @property
    def uses_push(self) -> bool:
        """Check if the push event stream is the configured transport."""
        return self.UPDATE_TRANSPORT == "push"

    @property
    def uses_polling(self) -> bool:
        """Check if interval polling is the configured transport."""
        return self.UPDATE_TRANSPORT == "poll"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Services accept an explicit Settings object as well; this is only the
    default when none is given.
    """
    return Settings()
