"""
Reconnect Supervisor

Owns the connect/disconnect lifecycle of a transport. safe_connect() is the
tolerant alternative to a bare connect(): when TWS / IB Gateway is not
running it waits and tries again (10 seconds between the first 50 attempts,
one minute afterwards) and it gives up immediately on configuration errors
such as an unreachable host or an unresolvable address.

All failure classes resolve to a boolean; classified errors never escape
safe_connect().
"""

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

from ibtools.config import IbConfig, get_ib_config
from ibtools.errors import RetryBudget
from ibtools.logging import get_logger
from .error_classifier import IbErrorClassifier, IbErrorType, RecoveryAction
from .transport import Transport

logger = get_logger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


async def sleep_unless_stopped(
    seconds: float, stop_event: asyncio.Event, sleep: Optional[Sleeper] = None
) -> bool:
    """
    Wait for seconds unless stop_event is set first.

    Returns:
        False if the stop event won the race
    """
    if stop_event.is_set():
        return False

    sleeper = asyncio.ensure_future((sleep or asyncio.sleep)(seconds))
    stopper = asyncio.ensure_future(stop_event.wait())
    try:
        await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (sleeper, stopper):
            if not task.done():
                task.cancel()

    return not stop_event.is_set()


class SupervisorState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class ReconnectSupervisor:
    """
    Drive a bounded connect campaign over a Transport.

    State machine: IDLE -> CONNECTING -> CONNECTED | FAILED. CONNECTING loops
    on refused connections until the retry budget is spent.
    """

    def __init__(
        self,
        transport: Transport,
        config: Optional[IbConfig] = None,
        sleep: Optional[Sleeper] = None,
        stop_event: Optional[asyncio.Event] = None,
    ):
        """
        Initialize the supervisor.

        Args:
            transport: Connection to supervise
            config: Retry settings, defaults to get_ib_config()
            sleep: Coroutine used for backoff waits (asyncio.sleep by default)
            stop_event: Set to abort a pending backoff wait
        """
        self.transport = transport
        self.config = config or get_ib_config()
        self._sleep = sleep or asyncio.sleep
        self._stop_event = stop_event or asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.state = SupervisorState.IDLE
        self.budget = RetryBudget(
            max_attempts=self.config.connect_max_retries,
            base_delay=self.config.connect_base_delay,
            escalated_delay=self.config.connect_escalated_delay,
            escalation_threshold=self.config.connect_escalation_threshold,
        )

        # Statistics
        self.connect_attempts = 0
        self.campaigns = 0
        self.last_error: Optional[str] = None
        self.last_connected_at: Optional[float] = None

    @property
    def stop_event(self) -> asyncio.Event:
        return self._stop_event

    def bind_loop(self) -> None:
        """
        Attach the stop event to the running event loop.

        An asyncio.Event belongs to the loop that first waits on it. When the
        supervisor is used from a new loop (a second asyncio.run), the event
        is replaced and a pending stop request is carried over.
        """
        loop = asyncio.get_running_loop()
        if loop is self._loop:
            return
        if self._loop is not None:
            stopped = self._stop_event.is_set()
            self._stop_event = asyncio.Event()
            if stopped:
                self._stop_event.set()
        self._loop = loop

    async def connect(self) -> None:
        """Single connect attempt; exceptions propagate to the caller."""
        self.connect_attempts += 1
        await self.transport.connect()

    def disconnect(self) -> None:
        self.transport.disconnect()
        self.state = SupervisorState.IDLE

    async def safe_connect(self, max_retries: Optional[int] = None) -> bool:
        """
        Connect, retrying while the gateway refuses the connection.

        Args:
            max_retries: Refusals tolerated before giving up
                (defaults to config.connect_max_retries, normally 100)

        Returns:
            True once connected, False after a fatal error, retry exhaustion
            or a stop request
        """
        if max_retries is None:
            max_retries = self.config.connect_max_retries

        self.bind_loop()
        self.budget.max_attempts = max_retries
        self.budget.reset()
        self.campaigns += 1
        self.state = SupervisorState.CONNECTING

        while True:
            try:
                await self.connect()
            except Exception as e:
                action = IbErrorClassifier.connect_action(e)
                if action is None:
                    self.state = SupervisorState.FAILED
                    raise

                self.last_error = f"{type(e).__name__}: {e}"

                if action is RecoveryAction.RETRY:
                    attempt = self.budget.record_failure()
                    if self.budget.exhausted:
                        logger.info("Giving up!!")
                        self.state = SupervisorState.FAILED
                        return False

                    if attempt == 0:
                        logger.info("No TWS!")
                    else:
                        logger.info(f"No TWS        Retry {attempt}/ {max_retries}")

                    if not await self._pause(self.budget.next_delay()):
                        logger.info("Connect campaign stopped during backoff")
                        self.state = SupervisorState.FAILED
                        return False
                    continue

                if action is RecoveryAction.FATAL:
                    if IbErrorClassifier.classify_exception(e) is IbErrorType.ADDRESS_ERROR:
                        logger.error(
                            f"Wrong address {self.config.host!r}, connection not possible: {e}"
                        )
                    else:
                        logger.error(
                            f"Cannot connect to specified host {self.config.host}:{self.config.port}: {e}"
                        )
                    self.state = SupervisorState.FAILED
                    return False

                # TOLERATE: the gateway reported a soft error, the socket is usable
                logger.info(f"IB reported an error while connecting: {e}")

            break

        self.budget.reset()
        self.state = SupervisorState.CONNECTED
        self.last_connected_at = time.time()
        return True

    async def _pause(self, seconds: float) -> bool:
        return await sleep_unless_stopped(seconds, self.stop_event, self._sleep)

    def stop(self) -> None:
        """Abort pending backoff waits."""
        self.stop_event.set()

    def get_stats(self) -> dict:
        return {
            "state": self.state.value,
            "connect_attempts": self.connect_attempts,
            "campaigns": self.campaigns,
            "attempts_so_far": self.budget.attempts_so_far,
            "max_attempts": self.budget.max_attempts,
            "last_error": self.last_error,
            "last_connected_at": self.last_connected_at,
        }

    def __repr__(self) -> str:
        return f"ReconnectSupervisor(state={self.state.value}, transport={self.transport!r})"
