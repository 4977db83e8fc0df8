"""
ibtools - keep an Interactive Brokers gateway connection alive.
"""

from dotenv import load_dotenv

from ibtools.logging import (
    configure_logging,
    get_logger,
    is_debug_mode,
    set_debug_mode,
)
from ibtools.version import __version__

# Load environment variables from .env file
load_dotenv()

__all__ = [
    "__version__",
    "configure_logging",
    "get_logger",
    "is_debug_mode",
    "set_debug_mode",
]
