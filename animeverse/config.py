"""
Client configuration using pydantic-settings.

Values come from environment variables (or a local .env file). Components
take explicit overrides in their constructors; these settings are only the
defaults they fall back to.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "AnimeVerse"
    log_level: str = "INFO"

    # Remote content service
    api_base_url: str = "http://node1.forgerhost.online:20034"
    http_request_timeout: float = 30.0

    # Retry settings (idempotent reads only, mutations are never retried)
    max_retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0

    # Browsing
    episodes_page_size: int = 20
    search_result_limit: int = 20

    # Comment threads - indentation levels before replies stop shifting right
    comment_max_levels: int = 3

    # Notifications
    notification_poll_interval: float = 60.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
