"""
Logging system for ibtools.

Console and rotating file output, component-specific levels and rate
limiting for repetitive retry messages.
"""

from ibtools.logging.config import (
    configure_logging,
    get_logger,
    is_debug_mode,
    reset_rate_limit_state,
    set_debug_mode,
    should_rate_limit_log,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "set_debug_mode",
    "is_debug_mode",
    "should_rate_limit_log",
    "reset_rate_limit_state",
]
