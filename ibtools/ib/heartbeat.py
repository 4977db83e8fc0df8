"""
Heartbeat Prober

The gateway resets API connections at least once a day, and a socket can
look open long after the session behind it is gone. check_connection()
answers "is the connection usable right now?" by round-tripping a
reqCurrentTime request: the reply races a one second timer, timeouts and
socket errors are retried a bounded number of times, and a "not connected"
session is torn down and re-established through the supervisor.

A probe on a healthy connection costs a single round trip (well under
10 ms on a local gateway).
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ibtools.config import IbConfig
from ibtools.logging import get_logger, should_rate_limit_log
from .error_classifier import IbErrorClassifier, RecoveryAction
from .supervisor import ReconnectSupervisor, Sleeper, sleep_unless_stopped
from .transport import MessageKind, Transport

logger = get_logger(__name__)


class ProbeOutcome(Enum):
    PENDING = "pending"
    ACKED = "acked"
    TIMED_OUT = "timed_out"


@dataclass
class HeartbeatAttempt:
    """One request/reply race inside a probe cycle"""

    attempt_index: int
    deadline: float
    outcome: ProbeOutcome = ProbeOutcome.PENDING
    started_at: float = field(default_factory=time.monotonic)
    reply: Any = None

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at


class HeartbeatProber:
    """
    Confirm connection liveness with a bounded request/reply probe.

    Only one probe runs per prober at a time; concurrent callers wait for
    the running probe to finish and then run their own.
    """

    def __init__(
        self,
        transport: Transport,
        supervisor: ReconnectSupervisor,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        reconnect_pause: Optional[float] = None,
        sleep: Optional[Sleeper] = None,
    ):
        """
        Initialize the prober.

        Args:
            transport: Connection to probe
            supervisor: Used to re-establish a session reported as not connected
            timeout: Seconds to wait for each reply (config.heartbeat_timeout)
            max_attempts: Failed attempts tolerated (config.heartbeat_max_attempts)
            reconnect_pause: Seconds between teardown and reconnect
                (config.reconnect_pause)
            sleep: Coroutine used for the reconnect pause
        """
        config: IbConfig = supervisor.config
        self.transport = transport
        self.supervisor = supervisor
        self.timeout = config.heartbeat_timeout if timeout is None else timeout
        self.max_attempts = (
            config.heartbeat_max_attempts if max_attempts is None else max_attempts
        )
        self.reconnect_pause = (
            config.reconnect_pause if reconnect_pause is None else reconnect_pause
        )
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

        # Statistics
        self.probes = 0
        self.acks = 0
        self.timeouts = 0
        self.send_errors = 0
        self.reconnects = 0
        self.last_attempt: Optional[HeartbeatAttempt] = None

    @property
    def stop_event(self) -> asyncio.Event:
        return self.supervisor.stop_event

    async def check_connection(self) -> bool:
        """
        Probe the connection, reconnecting if the session is gone.

        Returns:
            True if a reply arrived, False once the retry count is exhausted,
            reconnection failed or a stop was requested
        """
        loop = asyncio.get_running_loop()
        if loop is not self._lock_loop:
            # A lock that has waited on another loop cannot be reused here
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        self.supervisor.bind_loop()

        async with self._lock:
            return await self._probe()

    async def _probe(self) -> bool:
        loop = asyncio.get_running_loop()
        waiter: Optional[asyncio.Future] = None

        def _on_current_time(payload: Any) -> None:
            if waiter is not None and not waiter.done():
                waiter.set_result(payload)

        handle = self.transport.subscribe(MessageKind.CURRENT_TIME, _on_current_time)
        self.probes += 1
        attempts = 0
        sessions_lost = 0

        try:
            while True:
                if self.stop_event.is_set():
                    logger.info("Heartbeat aborted, stop requested")
                    return False

                waiter = loop.create_future()
                try:
                    self.transport.send_message(MessageKind.REQUEST_CURRENT_TIME)
                except Exception as e:
                    action = IbErrorClassifier.probe_action(e)
                    if action is RecoveryAction.RETRY:
                        self.send_errors += 1
                        attempts += 1
                        if should_rate_limit_log("heartbeat_send_error", 60):
                            logger.warning(f"Heartbeat send failed ({attempts}): {e}")
                        if attempts > self.max_attempts:
                            logger.warning(
                                f"Heartbeat gave up after {attempts} failed sends"
                            )
                            return False
                        # Let the event loop run before retrying
                        await asyncio.sleep(0)
                        continue

                    if action is RecoveryAction.RETRY_WITH_RECONNECT:
                        sessions_lost += 1
                        if sessions_lost > self.max_attempts:
                            logger.warning(
                                f"Heartbeat gave up after {sessions_lost} lost sessions"
                            )
                            return False
                        if not await self._reconnect():
                            return False
                        attempts = 0
                        continue

                    raise

                attempt = HeartbeatAttempt(attempt_index=attempts, deadline=self.timeout)
                self.last_attempt = attempt

                done, _ = await asyncio.wait({waiter}, timeout=self.timeout)
                if waiter in done:
                    attempt.outcome = ProbeOutcome.ACKED
                    attempt.reply = waiter.result()
                    self.acks += 1
                    logger.debug(
                        f"Heartbeat acked on attempt {attempts + 1} "
                        f"after {attempt.elapsed * 1000:.1f} ms"
                    )
                    return True

                waiter.cancel()
                attempt.outcome = ProbeOutcome.TIMED_OUT
                self.timeouts += 1
                attempts += 1
                logger.debug(f"Heartbeat attempt {attempts} timed out after {self.timeout}s")
                if attempts > self.max_attempts:
                    logger.warning(
                        f"No heartbeat reply after {attempts} attempts, connection presumed lost"
                    )
                    return False
        finally:
            self.transport.unsubscribe(handle)

    async def _reconnect(self) -> bool:
        """Tear down the session, pause and reconnect through the supervisor."""
        self.supervisor.disconnect()
        logger.info("not connected ... trying to reconnect")

        if not await sleep_unless_stopped(
            self.reconnect_pause, self.stop_event, self._sleep
        ):
            return False

        self.reconnects += 1
        if not await self.supervisor.safe_connect():
            logger.warning("Reconnect failed, connection presumed lost")
            return False
        return True

    def get_stats(self) -> dict:
        return {
            "probes": self.probes,
            "acks": self.acks,
            "timeouts": self.timeouts,
            "send_errors": self.send_errors,
            "reconnects": self.reconnects,
            "last_outcome": self.last_attempt.outcome.value if self.last_attempt else None,
            "timeout": self.timeout,
            "max_attempts": self.max_attempts,
        }
