"""
Retry budget with escalating delay for ibtools.

A reconnect campaign waits a short base delay between the first attempts and
switches to a longer delay once the escalation threshold is reached. The
budget is bounded: once exhausted the campaign ends with failure.
"""

from typing import Optional

from ibtools.logging import get_logger

logger = get_logger(__name__)


class RetryBudget:
    """
    Retry state for one reconnect campaign.

    Attributes:
        max_attempts: Number of failures tolerated before giving up
        base_delay: Delay in seconds while below the escalation threshold
        escalated_delay: Delay in seconds from the escalation threshold on
        escalation_threshold: Zero-based failure index where the delay escalates
        attempts_so_far: Failures recorded in the current campaign
    """

    def __init__(
        self,
        max_attempts: int = 100,
        base_delay: float = 10.0,
        escalated_delay: float = 60.0,
        escalation_threshold: int = 50,
    ) -> None:
        """
        Initialize a retry budget.

        Args:
            max_attempts: Number of failures tolerated (default: 100)
            base_delay: Delay before escalation in seconds (default: 10.0)
            escalated_delay: Delay after escalation in seconds (default: 60.0)
            escalation_threshold: Failure index where the delay escalates (default: 50)
        """
        if max_attempts < 0:
            raise ValueError(f"max_attempts must not be negative: {max_attempts}")

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.escalated_delay = escalated_delay
        self.escalation_threshold = escalation_threshold
        self.attempts_so_far = 0
        self._last_index: Optional[int] = None

    @property
    def exhausted(self) -> bool:
        """True once the recorded failures reached max_attempts."""
        return self._last_index is not None and self._last_index >= self.max_attempts

    def record_failure(self) -> int:
        """
        Record a failed attempt.

        Returns:
            Zero-based index of the failure (0 for the first one)
        """
        index = 0 if self._last_index is None else self._last_index + 1
        self._last_index = index
        self.attempts_so_far = min(index + 1, self.max_attempts)
        return index

    def next_delay(self) -> float:
        """Delay to wait after the most recently recorded failure."""
        return calculate_delay(self._last_index or 0, self)

    def reset(self) -> None:
        """Start a fresh campaign."""
        if self.attempts_so_far:
            logger.debug(f"Resetting retry budget after {self.attempts_so_far} failures")
        self.attempts_so_far = 0
        self._last_index = None

    def __repr__(self) -> str:
        return (
            f"RetryBudget(attempts_so_far={self.attempts_so_far}, "
            f"max_attempts={self.max_attempts}, base_delay={self.base_delay}, "
            f"escalated_delay={self.escalated_delay}, "
            f"escalation_threshold={self.escalation_threshold})"
        )


def calculate_delay(retry_number: int, budget: RetryBudget) -> float:
    """
    Calculate the delay for a specific retry attempt.

    Args:
        retry_number: The zero-based failure index
        budget: Budget holding the delay parameters

    Returns:
        Delay time in seconds
    """
    if retry_number < budget.escalation_threshold:
        return budget.base_delay
    return budget.escalated_delay
