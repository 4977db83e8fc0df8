"""
IB Error Classifier

Maps connection failures to an error type and the error type to a recovery
action. Two sources are classified:

- exceptions raised by a transport while connecting or sending
  (ib_insync surfaces socket errors and builtin ConnectionError);
- error codes delivered asynchronously through the gateway errorEvent:
  https://interactivebrokers.github.io/tws-api/message_codes.html

The heartbeat prober and the reconnect supervisor each own a policy table,
so the same failure can be retried in place while probing and be fatal
while connecting.
"""

import asyncio
import errno
import socket
from enum import Enum
from typing import Dict, Optional, Tuple

from ibtools.errors import (
    AddressResolutionError,
    GatewayRefusedError,
    HostUnreachableError,
    IbProtocolError,
    NotConnectedError,
    TransportError,
)
from ibtools.logging import get_logger

logger = get_logger(__name__)


class IbErrorType(Enum):
    """Classification of connection failures"""

    TRANSPORT = "transport"  # Socket failed on an open session
    NOT_CONNECTED = "not_connected"  # API session missing
    CONNECTION_REFUSED = "refused"  # Nothing listening on host:port
    HOST_UNREACHABLE = "host_unreachable"  # Routing failure
    ADDRESS_ERROR = "address"  # Host name does not resolve
    PROTOCOL = "protocol"  # API-level error reported by the gateway


class RecoveryAction(Enum):
    """What the caller does about a classified failure"""

    RETRY = "retry"  # Retry in place, counts against the budget
    RETRY_WITH_RECONNECT = "retry_with_reconnect"  # Tear down, reconnect, reset
    FATAL = "fatal"  # Give up immediately
    TOLERATE = "tolerate"  # Log and carry on as if it succeeded


# Send failures on an open session are retried in place, including
# routing, name resolution and soft API errors.
PROBE_POLICY: Dict[IbErrorType, RecoveryAction] = {
    IbErrorType.TRANSPORT: RecoveryAction.RETRY,
    IbErrorType.CONNECTION_REFUSED: RecoveryAction.RETRY,
    IbErrorType.HOST_UNREACHABLE: RecoveryAction.RETRY,
    IbErrorType.ADDRESS_ERROR: RecoveryAction.RETRY,
    IbErrorType.PROTOCOL: RecoveryAction.RETRY,
    IbErrorType.NOT_CONNECTED: RecoveryAction.RETRY_WITH_RECONNECT,
}

# PROTOCOL / NOT_CONNECTED -> TOLERATE keeps the historic behaviour where an
# API-level error during connect still leaves a usable socket. Under review.
CONNECT_POLICY: Dict[IbErrorType, RecoveryAction] = {
    IbErrorType.CONNECTION_REFUSED: RecoveryAction.RETRY,
    IbErrorType.TRANSPORT: RecoveryAction.RETRY,
    IbErrorType.HOST_UNREACHABLE: RecoveryAction.FATAL,
    IbErrorType.ADDRESS_ERROR: RecoveryAction.FATAL,
    IbErrorType.PROTOCOL: RecoveryAction.TOLERATE,
    IbErrorType.NOT_CONNECTED: RecoveryAction.TOLERATE,
}


class IbErrorClassifier:
    """
    Classify connection failures for the heartbeat and reconnect loops.
    """

    # Own exceptions, checked in order (subclasses first)
    EXCEPTION_MAPPINGS: Tuple[Tuple[type, IbErrorType], ...] = (
        (NotConnectedError, IbErrorType.NOT_CONNECTED),
        (GatewayRefusedError, IbErrorType.CONNECTION_REFUSED),
        (HostUnreachableError, IbErrorType.HOST_UNREACHABLE),
        (AddressResolutionError, IbErrorType.ADDRESS_ERROR),
        (IbProtocolError, IbErrorType.PROTOCOL),
        (TransportError, IbErrorType.TRANSPORT),
    )

    UNREACHABLE_ERRNOS = frozenset({errno.EHOSTUNREACH, errno.ENETUNREACH})

    # Gateway error codes relevant to connection liveness
    ERROR_MAPPINGS = {
        326: ("Client id is already in use", IbErrorType.PROTOCOL, 2.0),
        502: ("Couldn't connect to TWS", IbErrorType.CONNECTION_REFUSED, 10.0),
        504: ("Not connected", IbErrorType.NOT_CONNECTED, 0.1),
        507: ("Bad message length", IbErrorType.TRANSPORT, 1.0),
        1100: (
            "Connectivity between IB and the TWS has been lost",
            IbErrorType.TRANSPORT,
            5.0,
        ),
        1300: ("Socket port has been reset", IbErrorType.NOT_CONNECTED, 0.1),
        2103: ("Market data farm connection is broken", IbErrorType.TRANSPORT, 2.0),
        2105: ("HMDS data farm connection is broken", IbErrorType.TRANSPORT, 2.0),
        2110: (
            "Connectivity between TWS and server is broken",
            IbErrorType.TRANSPORT,
            5.0,
        ),
    }

    # Informational codes (connectivity restored, farm status OK)
    INFO_CODES = frozenset({1101, 1102, 2104, 2106, 2107, 2108, 2119, 2158})

    NOT_CONNECTED_KEYWORDS = ["not connected", "not yet connected"]

    @classmethod
    def classify_exception(cls, exc: BaseException) -> Optional[IbErrorType]:
        """
        Classify an exception raised by a transport.

        Args:
            exc: Exception raised by connect() or send_message()

        Returns:
            The error type, or None when the exception is not a connection
            failure this module knows how to recover from
        """
        for exc_class, error_type in cls.EXCEPTION_MAPPINGS:
            if isinstance(exc, exc_class):
                return error_type

        # gaierror is an OSError subclass, check it before the errno table
        if isinstance(exc, socket.gaierror):
            return IbErrorType.ADDRESS_ERROR

        if isinstance(exc, ConnectionRefusedError):
            return IbErrorType.CONNECTION_REFUSED

        if isinstance(exc, OSError) and exc.errno in cls.UNREACHABLE_ERRNOS:
            return IbErrorType.HOST_UNREACHABLE

        if isinstance(
            exc, (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)
        ):
            return IbErrorType.TRANSPORT

        if isinstance(exc, ConnectionError):
            # ib_insync raises bare ConnectionError for API-level failures
            message = str(exc).lower()
            if any(keyword in message for keyword in cls.NOT_CONNECTED_KEYWORDS):
                return IbErrorType.NOT_CONNECTED
            return IbErrorType.PROTOCOL

        if isinstance(exc, (TimeoutError, asyncio.TimeoutError, OSError)):
            return IbErrorType.TRANSPORT

        logger.debug(f"Unclassified exception {type(exc).__name__}: {exc}")
        return None

    @classmethod
    def classify(cls, error_code: int, error_message: str) -> Tuple[IbErrorType, float]:
        """
        Classify a gateway error code and return (type, suggested_wait_seconds).

        Args:
            error_code: IB error code
            error_message: IB error message text

        Returns:
            Tuple of (error_type, suggested_wait_seconds)
        """
        if error_code in cls.ERROR_MAPPINGS:
            description, error_type, wait_time = cls.ERROR_MAPPINGS[error_code]
            logger.debug(
                f"Found explicit mapping: {description} -> {error_type.value}, wait={wait_time}s"
            )
            return error_type, wait_time

        message = error_message.lower()
        if any(keyword in message for keyword in cls.NOT_CONNECTED_KEYWORDS):
            return IbErrorType.NOT_CONNECTED, 0.1
        if "connect" in message or "socket" in message:
            return IbErrorType.TRANSPORT, 2.0

        return IbErrorType.PROTOCOL, 0.0

    @classmethod
    def is_informational(cls, error_code: int) -> bool:
        """Check if a gateway code is a status notice rather than a failure"""
        return error_code in cls.INFO_CODES

    @classmethod
    def probe_action(cls, exc: BaseException) -> Optional[RecoveryAction]:
        """Recovery action for a failure while sending a heartbeat"""
        error_type = cls.classify_exception(exc)
        if error_type is None:
            return None
        return PROBE_POLICY.get(error_type)

    @classmethod
    def connect_action(cls, exc: BaseException) -> Optional[RecoveryAction]:
        """Recovery action for a failure while connecting"""
        error_type = cls.classify_exception(exc)
        if error_type is None:
            return None
        return CONNECT_POLICY.get(error_type)

    @classmethod
    def format_error_info(cls, exc: BaseException) -> dict:
        """
        Format exception classification for logging and CLI output.

        Returns:
            Dictionary with error classification and details
        """
        error_type = cls.classify_exception(exc)
        probe = cls.probe_action(exc)
        connect = cls.connect_action(exc)
        return {
            "error_class": type(exc).__name__,
            "error_message": str(exc),
            "error_type": error_type.value if error_type else None,
            "probe_action": probe.value if probe else None,
            "connect_action": connect.value if connect else None,
        }
