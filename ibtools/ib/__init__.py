"""
IB (Interactive Brokers) Module

Connection liveness and reconnection for TWS / IB Gateway:

- IbErrorClassifier: maps connection failures to recovery actions
- ReconnectSupervisor: bounded connect campaign with escalating delay
- HeartbeatProber: reqCurrentTime round trip with bounded retries
- ConnectionTools: both of the above over one transport
- IbInsyncTransport: Transport implementation on top of ib_insync
"""

from .connection_tools import ConnectionTools
from .error_classifier import (
    CONNECT_POLICY,
    PROBE_POLICY,
    IbErrorClassifier,
    IbErrorType,
    RecoveryAction,
)
from .heartbeat import HeartbeatAttempt, HeartbeatProber, ProbeOutcome
from .supervisor import ReconnectSupervisor, SupervisorState, sleep_unless_stopped
from .transport import (
    ConnectionState,
    IbInsyncTransport,
    MessageKind,
    SubscriptionHandle,
    SubscriptionRegistry,
    Transport,
)

__all__ = [
    "ConnectionTools",
    "IbErrorClassifier",
    "IbErrorType",
    "RecoveryAction",
    "PROBE_POLICY",
    "CONNECT_POLICY",
    "HeartbeatProber",
    "HeartbeatAttempt",
    "ProbeOutcome",
    "ReconnectSupervisor",
    "SupervisorState",
    "sleep_unless_stopped",
    "Transport",
    "IbInsyncTransport",
    "MessageKind",
    "ConnectionState",
    "SubscriptionHandle",
    "SubscriptionRegistry",
]
