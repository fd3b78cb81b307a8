"""Retry controller for provider calls.

Runs an async operation up to a bounded number of times, each attempt under
a per-attempt timeout. Rate-limit failures back off exponentially; other
retryable failures wait a small, linearly growing delay. Credential,
configuration and deadline failures are never retried.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from topicfilter.domain.errors import (
    AttemptTimeoutError,
    AuthError,
    ConfigError,
    DeadlineExceededError,
    RateLimitedError,
    RetriesExhaustedError,
)
from topicfilter.domain.events.api_events import (
    EventListener,
    RetryScheduled,
    dispatch_event,
    log_event,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

NON_RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (AuthError, ConfigError, DeadlineExceededError)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and delays, all in seconds."""
    max_attempts: int = 3
    initial_delay: float = 2.0
    backoff_factor: float = 2.0
    timeout: float = 30.0
    error_delay: float = 0.5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive.")
        if self.initial_delay < 0 or self.error_delay < 0:
            raise ValueError("Delays must be non-negative.")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1.")


class RetryController:
    """Executes operations with per-attempt timeouts and bounded retries."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        listener: Optional[EventListener] = log_event,
    ):
        self.policy = policy or RetryPolicy()
        self._clock = clock
        self._sleep = sleep
        self._listener = listener
        logger.info(
            f"RetryController initialized: max_attempts={self.policy.max_attempts}, "
            f"initial_delay={self.policy.initial_delay}s, factor={self.policy.backoff_factor}, "
            f"timeout={self.policy.timeout}s"
        )

    def _attempt_timeout(self, deadline: Optional[float]) -> float:
        if deadline is None:
            return self.policy.timeout
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise DeadlineExceededError("Deadline reached before the next attempt could start.")
        return min(self.policy.timeout, remaining)

    async def retry(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        deadline: Optional[float] = None,
        description: str = "operation",
    ) -> T:
        """Runs `operation` until it succeeds or the attempt budget is spent.

        Args:
            operation: Zero-argument callable returning a fresh awaitable per attempt.
            deadline: Absolute time on this controller's clock. No attempt starts
                and no delay runs past it.
            description: Used in log messages.

        Returns:
            The operation's result.

        Raises:
            AuthError, ConfigError: Immediately, without another attempt.
            DeadlineExceededError: When the deadline cuts the work short.
            RetriesExhaustedError: When every attempt failed.
        """
        policy = self.policy
        rate_limit_delay = policy.initial_delay
        error_failures = 0
        last_error: Optional[BaseException] = None

        for attempt in range(1, policy.max_attempts + 1):
            timeout = self._attempt_timeout(deadline)
            try:
                return await asyncio.wait_for(operation(), timeout=timeout)
            except NON_RETRYABLE_EXCEPTIONS as e:
                logger.error(f"Non-retryable error in {description} on attempt {attempt}: {e}")
                raise
            except RateLimitedError as e:
                last_error = e
                delay = rate_limit_delay
                rate_limit_delay *= policy.backoff_factor
                logger.warning(f"Rate limited during {description} (attempt {attempt}/{policy.max_attempts}).")
            except asyncio.TimeoutError as e:
                if deadline is not None and self._clock() >= deadline:
                    raise DeadlineExceededError(f"Deadline reached during {description}.") from e
                last_error = e if isinstance(e, AttemptTimeoutError) else AttemptTimeoutError(timeout)
                error_failures += 1
                delay = policy.error_delay * error_failures
                logger.warning(f"{description} timed out after {timeout:.2f}s (attempt {attempt}/{policy.max_attempts}).")
            except Exception as e:
                last_error = e
                error_failures += 1
                delay = policy.error_delay * error_failures
                logger.warning(
                    f"{description} failed on attempt {attempt}/{policy.max_attempts}: "
                    f"{type(e).__name__}: {e}"
                )

            if attempt == policy.max_attempts:
                break

            if deadline is not None and self._clock() + delay >= deadline:
                raise DeadlineExceededError(
                    f"Deadline leaves no room for a {delay:.2f}s retry delay in {description}."
                ) from last_error

            dispatch_event(
                self._listener,
                RetryScheduled(attempt_number=attempt + 1, delay_seconds=delay, error_type=type(last_error).__name__),
            )
            logger.info(f"Retrying {description} in {delay:.2f}s...")
            await self._sleep(delay)

        assert last_error is not None
        logger.error(f"{description} failed after {policy.max_attempts} attempts.")
        raise RetriesExhaustedError(last_error, policy.max_attempts)
