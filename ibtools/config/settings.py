"""
Runtime settings for ibtools.

Logging settings are read from IBTOOLS_LOGGING_* environment variables.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingSettings(BaseSettings):
    """Logging Settings."""

    level: str = Field(default="INFO")
    log_dir: Optional[str] = Field(default=None)
    debug: bool = Field(default=False)

    model_config = SettingsConfigDict(env_prefix="IBTOOLS_LOGGING_")


@lru_cache
def get_logging_settings() -> LoggingSettings:
    """Get logging settings (cached)."""
    return LoggingSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache (mainly for testing)."""
    get_logging_settings.cache_clear()
