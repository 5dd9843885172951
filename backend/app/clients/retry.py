"""Retry combinator shared by every outbound caller.

Usage:
    policy = RetryPolicy(max_attempts=3, backoff=exponential_backoff(2.0))
    result = await retry(lambda: client.get_price(symbol), policy)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def exponential_backoff(base: float = 2.0, factor: float = 2.0, cap: float | None = None) -> Callable[[int], float]:
    """Delay before the next attempt, given the attempt number that just failed (1-based).

    With base 2.0: 2s after the first failure, 4s after the second.
    """

    def _delay(attempt: int) -> float:
        delay = base * (factor ** (attempt - 1))
        return min(delay, cap) if cap is not None else delay

    return _delay


def _always(exc: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try, how long to wait, and what is worth retrying."""

    max_attempts: int = 3
    backoff: Callable[[int], float] = field(default_factory=exponential_backoff)
    retryable: Callable[[BaseException], bool] = _always


async def retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds or the policy gives up.

    Non-retryable errors are raised immediately. When attempts run out the
    last error is raised. Cancellation is never retried.
    """
    policy = policy or RetryPolicy()

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if not policy.retryable(exc):
                raise
            if attempt >= policy.max_attempts:
                logger.warning(
                    "%s failed after %d attempts: %s", description, attempt, exc
                )
                raise
            delay = policy.backoff(attempt)
            logger.info(
                "%s failed (%s), retry %d/%d in %.1fs",
                description, exc, attempt, policy.max_attempts - 1, delay,
            )
            await sleep(delay)

    raise ValueError("RetryPolicy.max_attempts must be at least 1")
