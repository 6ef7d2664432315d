"""Retry strategies and the bounded retry-with-backoff combinator.

Example:
    >>> from openemr_ops.core.retry import LinearBackoff
    >>>
    >>> strategy = LinearBackoff(max_attempts=60, base_delay=1.0, increment=1.0, max_delay=5.0)
    >>> [strategy.next_delay(n) for n in range(7)]
    [1.0, 2.0, 3.0, 4.0, 5.0, 5.0, 5.0]
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

from openemr_ops.core.clock import Clock, SystemClock
from openemr_ops.core.logging import get_logger
from openemr_ops.core.result import StepResult

logger = get_logger(__name__)

T = TypeVar("T")


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before the next attempt.

        Args:
            attempt: Zero-based retry number (0 = first retry)

        Returns:
            Delay in seconds before next attempt
        """
        ...

    @abstractmethod
    def should_retry(self, attempts_made: int) -> bool:
        """Determine if another attempt is allowed after ``attempts_made`` failures."""
        ...


@dataclass
class LinearBackoff(RetryStrategy):
    """Linear backoff strategy.

    Delay = min(base_delay + increment * attempt, max_delay)
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    increment: float = 1.0
    max_delay: float = 30.0

    def next_delay(self, attempt: int) -> float:
        return min(self.base_delay + (self.increment * attempt), self.max_delay)

    def should_retry(self, attempts_made: int) -> bool:
        return attempts_made < self.max_attempts


@dataclass
class ConstantBackoff(RetryStrategy):
    """Constant delay between attempts."""

    max_attempts: int = 3
    delay: float = 1.0

    def next_delay(self, attempt: int) -> float:
        return self.delay

    def should_retry(self, attempts_made: int) -> bool:
        return attempts_made < self.max_attempts


@dataclass
class SteppedBackoff(RetryStrategy):
    """Per-attempt delay table; the last entry repeats once exhausted.

    ``SteppedBackoff(steps=(1, 1, 1, 2))`` waits 1s for the first three
    retries and 2s for every retry after that.
    """

    max_attempts: int = 30
    steps: Sequence[float] = (1.0, 1.0, 1.0, 2.0)

    def next_delay(self, attempt: int) -> float:
        if not self.steps:
            return 0.0
        return float(self.steps[min(attempt, len(self.steps) - 1)])

    def should_retry(self, attempts_made: int) -> bool:
        return attempts_made < self.max_attempts


RetryHook = Callable[[int, StepResult, float], None]


def retry_step(
    step: Callable[[], StepResult[T]],
    strategy: RetryStrategy,
    *,
    clock: Clock | None = None,
    on_retry: RetryHook | None = None,
    name: str = "step",
) -> StepResult[T]:
    """Run ``step`` until it stops returning a ``TRANSIENT`` result.

    ``SUCCESS`` and ``FATAL`` results are returned immediately. A
    ``TRANSIENT`` result is retried while the strategy allows; once it
    does not, the last transient result is returned to the caller, which
    decides whether exhaustion is fatal.

    Args:
        step: Zero-argument callable returning a :class:`StepResult`.
        strategy: Bounds the number of attempts and the delay between them.
        clock: Sleep provider (defaults to the system clock).
        on_retry: Called as ``on_retry(attempts_made, result, delay)``
            before each sleep.
        name: Step name for log events.
    """
    clock = clock or SystemClock()
    attempts_made = 0
    while True:
        result = step()
        attempts_made += 1
        if not result.retryable:
            return result
        if not strategy.should_retry(attempts_made):
            logger.warning(
                "retries_exhausted", step=name, attempts=attempts_made, reason=result.message
            )
            return result
        delay = strategy.next_delay(attempts_made - 1)
        if on_retry is not None:
            on_retry(attempts_made, result, delay)
        logger.debug("step_retry", step=name, attempt=attempts_made, delay_s=delay)
        clock.sleep(delay)


__all__ = [
    "RetryStrategy",
    "LinearBackoff",
    "ConstantBackoff",
    "SteppedBackoff",
    "retry_step",
]
