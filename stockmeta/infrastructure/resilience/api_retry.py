"""Service for executing fallible operations with automatic retries.

Implements exponential backoff with jitter for transient errors: network
failures without a status code, rate limits (429) and server errors (5xx).
Rate-limit errors cool down harder than generic transient failures. Other
4xx errors are not retried. Once the budget is spent the last error is
re-raised unchanged.
"""

import asyncio
import inspect
import logging
import random
from typing import Any, Awaitable, Callable, Iterator, Optional, Union

from stockmeta.domain.errors import (
    CredentialError,
    OutputParseError,
    PoolExhaustedError,
    RateLimitedError,
    status_code_of,
)
from stockmeta.domain.events import EventSink, RetryScheduled, dispatch_event
from stockmeta.domain.models.tasks import RetryPolicy, record_retry

logger = logging.getLogger(__name__)

Operation = Callable[[], Union[Awaitable[Any], Any]]


# --- Classification ---

def default_should_retry(error: BaseException) -> bool:
    """Default retry classification.

    Retries on "no status code" (network-level failures and malformed output),
    on HTTP 429 and on 5xx. Does not retry other 4xx, credential rejections,
    or an exhausted credential pool.
    """
    if isinstance(error, PoolExhaustedError):
        return False
    if isinstance(error, OutputParseError):
        return True
    status = status_code_of(error)
    if isinstance(error, CredentialError) and status != 429:
        return False
    if status is None:
        return True
    return status == 429 or status >= 500


def is_rate_limit_error(error: BaseException) -> bool:
    return isinstance(error, RateLimitedError) or status_code_of(error) == 429


# --- Delay computation ---

def base_delay_for(policy: RetryPolicy, attempt: int) -> float:
    """Jitter-free delay before the retry that follows attempt ``attempt`` (0-indexed)."""
    delay = policy.base_delay * (policy.multiplier ** attempt)
    if policy.max_delay is not None:
        delay = min(delay, policy.max_delay)
    return delay


def compute_delay(
    policy: RetryPolicy,
    attempt: int,
    error: Optional[BaseException] = None,
    rng: Optional[random.Random] = None,
) -> float:
    """Full delay for attempt ``attempt``: backoff, rate-limit scaling, then jitter."""
    delay = base_delay_for(policy, attempt)
    if error is not None and is_rate_limit_error(error):
        delay *= policy.rate_limit_multiplier
    if policy.jitter_bound > 0:
        delay += (rng or random).uniform(0, policy.jitter_bound)
    return delay


def backoff_schedule(policy: RetryPolicy) -> Iterator[float]:
    """Yields the jitter-free delays between consecutive attempts."""
    for attempt in range(policy.max_retries):
        yield base_delay_for(policy, attempt)


# --- Retry Engine ---

class RetryEngine:
    """Runs a zero-argument operation until it succeeds or the budget is spent."""

    def __init__(
        self,
        event_sink: Optional[EventSink] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """Initializes the RetryEngine.

        Args:
            event_sink: Optional receiver for RetryScheduled events.
            sleep: Awaitable sleep used between attempts (replaceable in tests).
            rng: Random source for jitter; the module-level generator if None.
        """
        self.event_sink = event_sink
        self._sleep = sleep
        self._rng = rng

    async def execute(self, operation: Operation, policy: Optional[RetryPolicy] = None) -> Any:
        """Executes ``operation`` with retries.

        Args:
            operation: Zero-argument callable; may be a coroutine function or
                return a plain value.
            policy: Retry settings; ``RetryPolicy()`` defaults if None.

        Returns:
            The first successful result.

        Raises:
            Exception: The last error, unchanged, once it is classified as
                fatal or the attempt budget is exhausted.
        """
        policy = policy or RetryPolicy()
        should_retry = policy.should_retry or default_should_retry
        op_name = getattr(operation, "__name__", type(operation).__name__)

        attempt = 0
        while True:
            try:
                result = operation()
                if inspect.isawaitable(result):
                    result = await result
                if attempt > 0:
                    logger.info(f"{op_name} succeeded on attempt {attempt + 1}/{policy.max_attempts}")
                return result
            except Exception as e:
                if not should_retry(e):
                    logger.debug(f"Non-retryable error from {op_name} on attempt {attempt + 1}: {type(e).__name__}: {e}")
                    raise
                if attempt >= policy.max_retries:
                    logger.error(
                        f"Max retries ({policy.max_retries}) reached for {op_name}. "
                        f"Last error: {type(e).__name__}: {e}"
                    )
                    raise

                rate_limited = is_rate_limit_error(e)
                delay = compute_delay(policy, attempt, e, self._rng)
                logger.warning(
                    f"Retryable error from {op_name} on attempt {attempt + 1}/{policy.max_attempts}: "
                    f"{type(e).__name__}. Waiting {delay:.2f}s..."
                )
                dispatch_event(self.event_sink, RetryScheduled(
                    attempt_number=attempt + 1,
                    delay_seconds=delay,
                    error_type=type(e).__name__,
                    rate_limited=rate_limited,
                ))
                record_retry()
            await self._sleep(delay)
            attempt += 1


async def retry_with_backoff(operation: Operation, policy: Optional[RetryPolicy] = None) -> Any:
    """Convenience wrapper around a default ``RetryEngine``."""
    return await RetryEngine().execute(operation, policy)
