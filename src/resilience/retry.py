"""Retry pattern with exponential backoff.

Used by the step lifecycle controller around every unit of work it runs
against the persistence collaborator. Only exceptions the config marks as
retryable are retried; everything else propagates on the first attempt.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import (
    Awaitable,
    Callable,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from config.settings import ResilienceSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")
ExceptionTypes = Union[Type[BaseException], Tuple[Type[BaseException], ...]]


class RetryExhausted(Exception):
    """Raised when all retry attempts have been exhausted."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_exception: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.attempts = attempts
        self.last_exception = last_exception


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including the initial one).
        base_delay: Initial delay between retries in seconds.
        max_delay: Maximum delay between retries in seconds.
        backoff_multiplier: Multiplier for exponential backoff.
        jitter: Random jitter as a fraction of the delay (0-1).
        retryable_exceptions: Exception types that trigger a retry.
        non_retryable_exceptions: Exception types that never retry.
        on_retry: Callback called with (attempt, exception, delay).
    """
    max_attempts: int = 3
    base_delay: float = 0.3
    max_delay: float = 5.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.1
    retryable_exceptions: ExceptionTypes = (Exception,)
    non_retryable_exceptions: ExceptionTypes = ()
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None

    @classmethod
    def from_settings(
        cls,
        settings: ResilienceSettings,
        retryable_exceptions: ExceptionTypes = (Exception,),
        non_retryable_exceptions: ExceptionTypes = (),
    ) -> "RetryConfig":
        """Build a config from the FORMS_RETRY_* settings."""
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            backoff_multiplier=settings.backoff_multiplier,
            jitter=settings.jitter,
            retryable_exceptions=retryable_exceptions,
            non_retryable_exceptions=non_retryable_exceptions,
        )

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay before the retry that follows ``attempt`` (1-indexed).

        Returns:
            Delay in seconds with exponential backoff and jitter.
        """
        delay = self.base_delay * (self.backoff_multiplier ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter > 0:
            jitter_range = delay * self.jitter
            delay = delay + random.uniform(-jitter_range, jitter_range)
            delay = max(0.0, delay)

        return delay

    def should_retry(self, exception: BaseException) -> bool:
        """Determine if an exception should trigger a retry."""
        if self.non_retryable_exceptions:
            if isinstance(exception, self.non_retryable_exceptions):
                return False
        return isinstance(exception, self.retryable_exceptions)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig,
    description: str = "operation",
) -> T:
    """Await ``operation()`` until it succeeds or the attempts run out.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        config: Retry policy.
        description: Name used in log messages.

    Returns:
        The operation's result.

    Raises:
        RetryExhausted: All attempts failed with retryable errors. The last
            error is kept on ``last_exception`` and chained as the cause.
        Exception: Any non-retryable error, re-raised unchanged.
    """
    for attempt in range(1, config.max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if not config.should_retry(e):
                raise

            if attempt >= config.max_attempts:
                logger.warning(
                    f"Retry exhausted for {description} "
                    f"after {attempt} attempts: {e}"
                )
                raise RetryExhausted(
                    f"Retry exhausted after {attempt} attempts",
                    attempts=attempt,
                    last_exception=e,
                ) from e

            delay = config.calculate_delay(attempt)
            logger.info(
                f"Retry {attempt}/{config.max_attempts} "
                f"for {description} in {delay:.2f}s: {e}"
            )

            if config.on_retry:
                config.on_retry(attempt, e, delay)

            await asyncio.sleep(delay)

    # max_attempts < 1 never enters the loop
    raise RetryExhausted(
        f"Retry exhausted after {config.max_attempts} attempts",
        attempts=config.max_attempts,
    )
