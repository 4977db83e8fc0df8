"""
Exception hierarchy for ibtools.

Transports that do not sit on top of ib_insync raise these exceptions so the
error classifier can map them to a recovery action without inspecting
socket-level details.
"""

from typing import Any, Optional

from ibtools.errors.error_codes import ErrorCodes


class IbToolsError(Exception):
    """
    Base exception class for all ibtools errors.

    Attributes:
        message: Human-readable error message
        error_code: Optional error code for reference and documentation
        details: Optional dictionary with additional error details
        suggestion: Optional suggestion text for how to fix the error
    """

    default_error_code: Optional[str] = None

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        self.suggestion = suggestion
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize error to a dictionary for logging and CLI output."""
        return {
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
            "suggestion": self.suggestion,
        }

    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


# --- Connection Errors ---


class IbConnectionError(IbToolsError):
    """
    Base class for errors related to the gateway connection.

    This class of errors covers socket failures, refused connections and
    protocol-level rejections reported by TWS / IB Gateway.
    """

    pass


class TransportError(IbConnectionError):
    """Sending on an open session failed at the socket level."""

    default_error_code = ErrorCodes.IB_TRANSPORT_LOST


class GatewayRefusedError(IbConnectionError):
    """Nothing is listening on the configured host/port."""

    default_error_code = ErrorCodes.IB_CONNECTION_REFUSED


class HostUnreachableError(IbConnectionError):
    """The configured host cannot be reached."""

    default_error_code = ErrorCodes.IB_HOST_UNREACHABLE


class AddressResolutionError(IbConnectionError):
    """The configured host name cannot be resolved."""

    default_error_code = ErrorCodes.IB_ADDRESS_RESOLUTION


class NotConnectedError(IbConnectionError):
    """The API session was never established or has been torn down."""

    default_error_code = ErrorCodes.IB_NOT_CONNECTED


class IbProtocolError(IbConnectionError):
    """The gateway reported an API-level error during connect."""

    default_error_code = ErrorCodes.IB_PROTOCOL


# --- Configuration Errors ---


class ConfigurationError(IbToolsError):
    """
    Invalid configuration value.

    The fix typically requires editing the environment / .env file.
    """

    default_error_code = ErrorCodes.CONFIG_INVALID_VALUE
