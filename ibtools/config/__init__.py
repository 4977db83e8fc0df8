"""Configuration for ibtools."""

from ibtools.config.ib_config import IbConfig, get_ib_config, reset_ib_config
from ibtools.config.settings import (
    LoggingSettings,
    clear_settings_cache,
    get_logging_settings,
)

__all__ = [
    "IbConfig",
    "get_ib_config",
    "reset_ib_config",
    "LoggingSettings",
    "get_logging_settings",
    "clear_settings_cache",
]
