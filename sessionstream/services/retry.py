"""Retry policy and controller for the send operation.

A failed send attempt is retried after a linearly increasing delay
(``attempt * base_delay``) until ``max_retries`` retries have been used.
The counter belongs to one outer call; a later send starts from zero.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded linear backoff.

    Attributes:
        max_retries: Retries allowed after the first attempt.
        base_delay: Seconds multiplied by the retry number.
    """

    max_retries: int = 3
    base_delay: float = 1.0

    def delay_for(self, retry_number: int) -> float:
        """Seconds to wait before retry ``retry_number`` (1-based)."""
        return retry_number * self.base_delay

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


@dataclass
class RetryOutcome:
    """Result of a retried operation.

    Attributes:
        succeeded: Whether any attempt completed without raising.
        attempts: Attempts made, including the successful one.
        result: Return value of the successful attempt.
        last_error: Exception from the final failed attempt.
    """

    succeeded: bool
    attempts: int
    result: Any = None
    last_error: BaseException | None = None


class RetryController:
    """Runs an async operation under a RetryPolicy."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        retry_on: tuple[type[Exception], ...] = (Exception,),
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._retry_on = retry_on

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        on_error: Callable[[Exception, int], None] | None = None,
        label: str = "operation",
    ) -> RetryOutcome:
        """Run ``operation`` until it succeeds or the budget is spent.

        Args:
            operation: Zero-argument coroutine factory, re-invoked per attempt.
            on_error: Called with (error, attempt_number) after each failure.
            label: Name used in log lines.

        Returns:
            RetryOutcome describing the final state. Errors outside
            ``retry_on`` end the run after one attempt. Never raises for
            ``Exception`` subclasses; cancellation propagates.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await operation()
            except Exception as e:
                if on_error is not None:
                    on_error(e, attempt)
                if not isinstance(e, self._retry_on):
                    logger.exception("%s failed with a non-retryable error", label)
                    return RetryOutcome(succeeded=False, attempts=attempt, last_error=e)
                # The Nth failure schedules retry N.
                if attempt > self.policy.max_retries:
                    logger.error(
                        "%s failed after %d attempts: %s", label, attempt, e
                    )
                    return RetryOutcome(succeeded=False, attempts=attempt, last_error=e)
                delay = self.policy.delay_for(attempt)
                logger.warning(
                    "%s failed (%s); retry %d/%d in %.1fs",
                    label,
                    e,
                    attempt,
                    self.policy.max_retries,
                    delay,
                )
                await self._sleep(delay)
                continue
            return RetryOutcome(succeeded=True, attempts=attempt, result=result)
