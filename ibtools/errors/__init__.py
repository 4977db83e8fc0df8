"""
Error handling framework for ibtools.

This module provides the exception hierarchy raised by transports, the
central error code registry and the retry budget used by reconnect
campaigns.
"""

from ibtools.errors.error_codes import ErrorCodes
from ibtools.errors.exceptions import (
    AddressResolutionError,
    ConfigurationError,
    GatewayRefusedError,
    HostUnreachableError,
    IbConnectionError,
    IbProtocolError,
    IbToolsError,
    NotConnectedError,
    TransportError,
)
from ibtools.errors.retry import RetryBudget, calculate_delay

__all__ = [
    # Base exception
    "IbToolsError",
    "ErrorCodes",
    # Connection errors
    "IbConnectionError",
    "TransportError",
    "GatewayRefusedError",
    "HostUnreachableError",
    "AddressResolutionError",
    "NotConnectedError",
    "IbProtocolError",
    "ConfigurationError",
    # Retry budget
    "RetryBudget",
    "calculate_delay",
]
