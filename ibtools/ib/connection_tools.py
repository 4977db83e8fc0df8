"""
Connection Tools

Composes the reconnect supervisor and the heartbeat prober over a single
transport, with one stop event shared by both so a shutdown aborts backoff
waits and probe loops alike.

Typical use:

    tools = ConnectionTools(IbInsyncTransport())
    if await tools.safe_connect():
        await tools.run_keepalive()
"""

import asyncio
from typing import Optional

from ibtools.config import IbConfig, get_ib_config
from ibtools.logging import get_logger
from .heartbeat import HeartbeatProber
from .supervisor import ReconnectSupervisor, Sleeper, sleep_unless_stopped
from .transport import IbInsyncTransport, Transport

logger = get_logger(__name__)


class ConnectionTools:
    """Keep a gateway connection established and alive."""

    def __init__(
        self,
        transport: Optional[Transport] = None,
        config: Optional[IbConfig] = None,
        sleep: Optional[Sleeper] = None,
    ):
        """
        Initialize connection tools.

        Args:
            transport: Connection to manage, an IbInsyncTransport by default
            config: Settings, defaults to get_ib_config()
            sleep: Coroutine used for all waits (asyncio.sleep by default)
        """
        self.config = config or get_ib_config()
        self.transport = transport or IbInsyncTransport(self.config)
        self._sleep = sleep
        self.supervisor = ReconnectSupervisor(self.transport, self.config, sleep=sleep)
        self.prober = HeartbeatProber(self.transport, self.supervisor, sleep=sleep)

    @property
    def stop_event(self) -> asyncio.Event:
        """Stop event shared by the supervisor, the prober and keepalive."""
        return self.supervisor.stop_event

    async def safe_connect(self, max_retries: Optional[int] = None) -> bool:
        return await self.supervisor.safe_connect(max_retries)

    async def check_connection(self) -> bool:
        return await self.prober.check_connection()

    def disconnect(self) -> None:
        self.supervisor.disconnect()

    def stop(self) -> None:
        """Abort backoff waits, probe loops and the keepalive loop."""
        self.supervisor.stop()

    async def run_keepalive(self, interval: Optional[float] = None) -> int:
        """
        Probe every interval seconds and reconnect when the probe fails.

        Args:
            interval: Seconds between probes (config.keepalive_interval)

        Returns:
            Number of probes run before the loop ended
        """
        if interval is None:
            interval = self.config.keepalive_interval

        self.supervisor.bind_loop()
        ticks = 0
        logger.info(f"Keepalive started (interval {interval}s)")
        while not self.stop_event.is_set():
            ticks += 1
            if not await self.check_connection():
                if self.stop_event.is_set():
                    break
                logger.warning("Connection lost, starting reconnect campaign")
                self.disconnect()
                if not await self.safe_connect():
                    logger.error("Reconnect campaign failed, keepalive stopped")
                    break

            if not await sleep_unless_stopped(interval, self.stop_event, self._sleep):
                break

        logger.info(f"Keepalive finished after {ticks} probes")
        return ticks

    def get_stats(self) -> dict:
        return {
            "supervisor": self.supervisor.get_stats(),
            "prober": self.prober.get_stats(),
            "stopped": self.stop_event.is_set(),
        }
