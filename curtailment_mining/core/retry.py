"""Retry with exponential backoff for calls to external sources."""

import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import structlog

from curtailment_mining.core.exceptions import UpstreamRateLimited, UpstreamUnavailable

logger = structlog.get_logger()

T = TypeVar("T")

RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (UpstreamRateLimited, UpstreamUnavailable)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (1-based): base, 2*base, 4*base, ... capped."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 5,
    base_delay: float = 2.0,
    max_delay: float = 60.0,
    retry_on: Tuple[Type[BaseException], ...] = RETRYABLE_ERRORS,
    description: str = "request",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` until it succeeds or ``max_attempts`` is reached.

    Only exceptions listed in ``retry_on`` are retried; anything else propagates
    immediately. When attempts are exhausted the last retryable error is wrapped
    in ``UpstreamUnavailable``. A ``retry_after`` hint on a rate-limit error is
    honoured when it is longer than the computed delay.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        max_attempts: Total attempts including the first
        base_delay: Delay in seconds before the first retry
        max_delay: Upper bound for any single delay
        retry_on: Exception types that trigger a retry
        description: Label used in log lines
        sleep: Awaitable sleep function

    Returns:
        Result of the first successful attempt
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: Optional[BaseException] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            last_error = e
            if attempt == max_attempts:
                break

            delay = backoff_delay(attempt, base_delay, max_delay)
            retry_after = getattr(e, "retry_after", None)
            if retry_after:
                delay = min(max(delay, retry_after), max_delay)

            logger.warning(
                "Retrying after transient failure",
                description=description,
                attempt=attempt,
                max_attempts=max_attempts,
                delay=delay,
                error=str(e),
                error_type=type(e).__name__,
            )
            await sleep(delay)

    logger.error(
        "Retries exhausted",
        description=description,
        attempts=max_attempts,
        error=str(last_error),
    )
    raise UpstreamUnavailable(
        f"{description} failed after {max_attempts} attempts: {last_error}",
        settlement_date=getattr(last_error, "settlement_date", None),
        settlement_period=getattr(last_error, "settlement_period", None),
    ) from last_error
