"""
IB Transport

The heartbeat prober and the reconnect supervisor only need a small
capability set from the underlying connection: connect, disconnect, send a
message, and subscribe to message kinds. This module defines that
capability as a Protocol and provides the ib_insync-backed implementation.
"""

import itertools
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

from ib_insync import IB

from ibtools.config import IbConfig, get_ib_config
from ibtools.errors import ErrorCodes, IbConnectionError, NotConnectedError
from ibtools.logging import get_logger
from .error_classifier import IbErrorClassifier, IbErrorType

logger = get_logger(__name__)

Listener = Callable[[Any], None]


class MessageKind(Enum):
    """Message kinds exchanged for liveness checks"""

    REQUEST_CURRENT_TIME = "request_current_time"
    CURRENT_TIME = "current_time"


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class SubscriptionHandle:
    """Opaque token returned by subscribe()"""

    kind: MessageKind
    token: int


@runtime_checkable
class Transport(Protocol):
    """Capabilities required from a gateway connection."""

    async def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def is_connected(self) -> bool: ...

    def send_message(self, kind: MessageKind) -> None: ...

    def subscribe(self, kind: MessageKind, callback: Listener) -> SubscriptionHandle: ...

    def unsubscribe(self, handle: SubscriptionHandle) -> None: ...


class SubscriptionRegistry:
    """
    Listeners keyed by message kind.

    Publishing after a listener was unsubscribed never reaches it, so a
    reply that arrives late is dropped instead of leaking into the next
    probe cycle.
    """

    def __init__(self):
        self._listeners: Dict[MessageKind, Dict[int, Listener]] = defaultdict(dict)
        self._tokens = itertools.count(1)

    def subscribe(self, kind: MessageKind, callback: Listener) -> SubscriptionHandle:
        handle = SubscriptionHandle(kind=kind, token=next(self._tokens))
        self._listeners[kind][handle.token] = callback
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        # Idempotent: a second unsubscribe is a no-op
        self._listeners[handle.kind].pop(handle.token, None)

    def publish(self, kind: MessageKind, payload: Any = None) -> int:
        """
        Deliver payload to every listener of kind.

        Returns:
            Number of listeners notified
        """
        listeners = list(self._listeners[kind].values())
        for callback in listeners:
            try:
                callback(payload)
            except Exception as e:
                logger.error(f"Listener for {kind.value} failed: {e}")
        return len(listeners)

    def listener_count(self, kind: Optional[MessageKind] = None) -> int:
        if kind is not None:
            return len(self._listeners[kind])
        return sum(len(listeners) for listeners in self._listeners.values())


class IbInsyncTransport:
    """
    Transport backed by an ib_insync IB instance.

    The current-time reply is delivered through the wrapper future created
    by reqCurrentTimeAsync() and re-published to CURRENT_TIME subscribers.
    """

    def __init__(self, config: Optional[IbConfig] = None, ib: Optional[IB] = None):
        """
        Initialize the transport.

        Args:
            config: Connection settings, defaults to get_ib_config()
            ib: Existing IB instance to wrap, a new one is created otherwise
        """
        self.config = config or get_ib_config()
        self.ib = ib if ib is not None else IB()
        self.registry = SubscriptionRegistry()
        self.state = ConnectionState.DISCONNECTED

        # Statistics
        self.connects = 0
        self.messages_sent = 0
        self.gateway_errors = 0

        self.ib.errorEvent += self._on_gateway_error
        self.ib.disconnectedEvent += self._on_disconnected

    async def connect(self) -> None:
        """Connect to TWS / IB Gateway. Exceptions propagate for classification."""
        self.state = ConnectionState.CONNECTING
        logger.debug(
            f"Connecting to IB at {self.config.host}:{self.config.port} "
            f"(client_id={self.config.client_id})"
        )
        try:
            await self.ib.connectAsync(
                host=self.config.host,
                port=self.config.port,
                clientId=self.config.client_id,
                timeout=self.config.timeout,
                readonly=self.config.readonly,
            )
        except BaseException:
            self.state = ConnectionState.DISCONNECTED
            raise

        self.connects += 1
        self.state = (
            ConnectionState.CONNECTED
            if self.ib.isConnected()
            else ConnectionState.DISCONNECTED
        )
        logger.info(
            f"IB connection established to {self.config.host}:{self.config.port} "
            f"(client_id={self.config.client_id})"
        )

    def disconnect(self) -> None:
        # ALWAYS disconnect, isConnected() can report a stale state
        try:
            self.ib.disconnect()
        finally:
            self.state = ConnectionState.DISCONNECTED

    def is_connected(self) -> bool:
        return self.ib.isConnected()

    def send_message(self, kind: MessageKind) -> None:
        """
        Send a message to the gateway.

        Raises:
            NotConnectedError: If the API session is not established
            OSError: If writing to the socket fails
        """
        if kind is not MessageKind.REQUEST_CURRENT_TIME:
            raise IbConnectionError(
                f"Unsupported outbound message: {kind.value}",
                error_code=ErrorCodes.IB_UNSUPPORTED_MESSAGE,
            )

        if not self.ib.isConnected():
            raise NotConnectedError(
                "IB API session is not connected",
                details={"host": self.config.host, "port": self.config.port},
            )

        future = self.ib.reqCurrentTimeAsync()
        self.messages_sent += 1
        future.add_done_callback(self._deliver_current_time)

    def _deliver_current_time(self, future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        self.registry.publish(MessageKind.CURRENT_TIME, future.result())

    def subscribe(self, kind: MessageKind, callback: Listener) -> SubscriptionHandle:
        return self.registry.subscribe(kind, callback)

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        self.registry.unsubscribe(handle)

    def _on_gateway_error(self, reqId, errorCode, errorString, contract=None):  # noqa: N803
        if IbErrorClassifier.is_informational(errorCode):
            logger.debug(f"IB status {errorCode}: {errorString}")
            return

        self.gateway_errors += 1
        error_type, wait_time = IbErrorClassifier.classify(errorCode, errorString)
        if error_type in (IbErrorType.TRANSPORT, IbErrorType.NOT_CONNECTED):
            logger.warning(
                f"IB connectivity error {errorCode} ({error_type.value}, "
                f"suggested wait {wait_time}s): {errorString}"
            )
        else:
            logger.debug(f"IB error {errorCode} reqId={reqId}: {errorString}")

    def _on_disconnected(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        logger.info(f"IB connection to {self.config.host}:{self.config.port} closed")

    def get_stats(self) -> dict:
        return {
            "host": self.config.host,
            "port": self.config.port,
            "client_id": self.config.client_id,
            "state": self.state.value,
            "ib_connected": self.ib.isConnected(),
            "connects": self.connects,
            "messages_sent": self.messages_sent,
            "gateway_errors": self.gateway_errors,
            "listeners": self.registry.listener_count(),
        }

    def __repr__(self) -> str:
        return (
            f"IbInsyncTransport(host={self.config.host}, port={self.config.port}, "
            f"client_id={self.config.client_id}, state={self.state.value})"
        )
