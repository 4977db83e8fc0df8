"""
Central registry of error codes for ibtools.

Error codes follow the pattern: CATEGORY-ErrorName

Categories:
- CONFIG: Configuration and validation errors
- IB: Interactive Brokers connection errors

Usage:
    from ibtools.errors.error_codes import ErrorCodes

    raise NotConnectedError(
        message="Socket is not connected",
        error_code=ErrorCodes.IB_NOT_CONNECTED,
    )
"""


class ErrorCodes:
    """Central registry of error codes for consistent error handling."""

    # Configuration errors
    CONFIG_INVALID_VALUE = "CONFIG-InvalidValue"

    # IB connection errors
    IB_TRANSPORT_LOST = "IB-TransportLost"
    IB_CONNECTION_REFUSED = "IB-ConnectionRefused"
    IB_HOST_UNREACHABLE = "IB-HostUnreachable"
    IB_ADDRESS_RESOLUTION = "IB-AddressResolution"
    IB_NOT_CONNECTED = "IB-NotConnected"
    IB_PROTOCOL = "IB-Protocol"
    IB_UNSUPPORTED_MESSAGE = "IB-UnsupportedMessage"
