"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables (SWR_ prefix)."""

    # Dedup and polling (seconds)
    deduping_interval: float = 2.0
    refresh_interval: float = 0.0      # 0 disables polling
    refresh_when_hidden: bool = False
    refresh_when_offline: bool = False

    # Focus / reconnect triggers
    revalidate_on_focus: bool = True
    revalidate_on_reconnect: bool = True
    focus_throttle_interval: float = 5.0

    # Error retry
    should_retry_on_error: bool = True
    error_retry_interval: float = 5.0
    error_retry_count: Optional[int] = None  # unbounded unless set

    # Slow loading notification
    loading_timeout: float = 3.0

    # Default HTTP fetcher
    fetch_base_url: Optional[str] = None
    fetch_timeout: float = 30.0

    log_level: str = "INFO"

    class Config:
        env_prefix = "SWR_"
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
