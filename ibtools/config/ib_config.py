"""
IB Configuration Management

Handles configuration for the Interactive Brokers connection, the heartbeat
probe and the reconnect campaign with environment variable support and
validation.
"""

import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional

from ibtools.errors import ConfigurationError
from ibtools.logging import get_logger

logger = get_logger(__name__)


@dataclass
class IbConfig:
    """
    Interactive Brokers connection settings.

    All settings can be overridden via environment variables with IB_ prefix.
    """

    # Connection settings
    host: str = field(default_factory=lambda: os.getenv("IB_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("IB_PORT", "4002")))
    client_id: int = field(default_factory=lambda: int(os.getenv("IB_CLIENT_ID", "1")))
    timeout: float = field(default_factory=lambda: float(os.getenv("IB_TIMEOUT", "10")))
    readonly: bool = field(
        default_factory=lambda: os.getenv("IB_READONLY", "false").lower() == "true"
    )

    # Heartbeat settings
    heartbeat_timeout: float = field(
        default_factory=lambda: float(os.getenv("IB_HEARTBEAT_TIMEOUT", "1.0"))
    )
    heartbeat_max_attempts: int = field(
        default_factory=lambda: int(os.getenv("IB_HEARTBEAT_MAX_ATTEMPTS", "10"))
    )
    reconnect_pause: float = field(
        default_factory=lambda: float(os.getenv("IB_RECONNECT_PAUSE", "0.1"))
    )

    # Reconnect campaign settings
    connect_max_retries: int = field(
        default_factory=lambda: int(os.getenv("IB_CONNECT_MAX_RETRIES", "100"))
    )
    connect_base_delay: float = field(
        default_factory=lambda: float(os.getenv("IB_CONNECT_BASE_DELAY", "10"))
    )
    connect_escalated_delay: float = field(
        default_factory=lambda: float(os.getenv("IB_CONNECT_ESCALATED_DELAY", "60"))
    )
    connect_escalation_threshold: int = field(
        default_factory=lambda: int(os.getenv("IB_CONNECT_ESCALATION_THRESHOLD", "50"))
    )

    # Keepalive loop
    keepalive_interval: float = field(
        default_factory=lambda: float(os.getenv("IB_KEEPALIVE_INTERVAL", "60"))
    )

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self):
        """Validate configuration values."""
        if not 1 <= self.port <= 65535:
            raise ConfigurationError(
                f"Invalid port number: {self.port}", details={"field": "port"}
            )

        if self.timeout <= 0:
            raise ConfigurationError(
                f"Timeout must be positive: {self.timeout}", details={"field": "timeout"}
            )

        if self.heartbeat_timeout <= 0:
            raise ConfigurationError(
                f"Heartbeat timeout must be positive: {self.heartbeat_timeout}",
                details={"field": "heartbeat_timeout"},
            )

        for name in ("heartbeat_max_attempts", "connect_max_retries"):
            if getattr(self, name) < 0:
                raise ConfigurationError(
                    f"{name} must not be negative: {getattr(self, name)}",
                    details={"field": name},
                )

        if self.reconnect_pause < 0 or self.connect_base_delay < 0:
            raise ConfigurationError(
                "Reconnect delays must not be negative",
                details={
                    "reconnect_pause": self.reconnect_pause,
                    "connect_base_delay": self.connect_base_delay,
                },
            )

        if self.connect_escalated_delay < self.connect_base_delay:
            raise ConfigurationError(
                f"Escalated delay ({self.connect_escalated_delay}) must not be "
                f"shorter than base delay ({self.connect_base_delay})",
                details={"field": "connect_escalated_delay"},
            )

        if self.keepalive_interval <= 0:
            raise ConfigurationError(
                f"Keepalive interval must be positive: {self.keepalive_interval}",
                details={"field": "keepalive_interval"},
            )

        logger.debug(
            f"IB config loaded: {self.host}:{self.port} "
            f"(client_id={self.client_id}, readonly={self.readonly})"
        )

    def is_paper_trading(self) -> bool:
        """Check if configured for paper trading."""
        # Paper trading ports: TWS=7497, IB Gateway=4002
        return self.port in [7497, 4002]

    def is_live_trading(self) -> bool:
        """Check if configured for live trading."""
        # Live trading ports: TWS=7496, IB Gateway=4001
        return self.port in [7496, 4001]

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        data = asdict(self)
        data["is_paper"] = self.is_paper_trading()
        data["is_live"] = self.is_live_trading()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IbConfig":
        """Create config from dictionary, ignoring unknown keys."""
        init_fields = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in init_fields})


# Default configuration instance
_default_config: Optional[IbConfig] = None


def get_ib_config() -> IbConfig:
    """Get the default IB configuration instance."""
    global _default_config
    if _default_config is None:
        _default_config = IbConfig()
    return _default_config


def reset_ib_config():
    """Reset the default configuration (mainly for testing)."""
    global _default_config
    _default_config = None
