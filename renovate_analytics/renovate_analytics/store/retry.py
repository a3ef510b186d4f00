"""Sequential retry with linear backoff for cache operations.

Attempts never overlap: each retry waits ``attempt * base_delay`` seconds
after the previous failure.  ``sleep`` and ``clock`` are injectable so
callers (and tests) control time, and an optional deadline abandons
further retries once it has elapsed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


class RetryPolicy(BaseModel):
    """Tuneable parameters for retry behaviour."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Total attempts, including the first one.",
    )
    base_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Delay unit in seconds; attempt n waits n * base_delay.",
    )

    def next_delay(self, attempt: int) -> float:
        """Delay to wait after failed *attempt* (1-based)."""
        return attempt * self.base_delay


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of :func:`run_with_retry`."""

    value: T | None
    attempts: int
    error: BaseException | None = None
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.timed_out


async def run_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation: str = "operation",
    sleep: Sleep = asyncio.sleep,
    clock: Clock = time.monotonic,
    deadline: float | None = None,
    non_retryable: tuple[type[Exception], ...] = (),
) -> RetryOutcome[T]:
    """Run *fn* until it succeeds, attempts run out, or *deadline* passes.

    Parameters
    ----------
    fn:
        Zero-argument coroutine factory, invoked afresh for each attempt.
    policy:
        Attempt ceiling and backoff unit.
    deadline:
        Seconds after the first attempt beyond which no further attempt
        starts.  A retry whose backoff would cross the deadline is not
        scheduled.
    non_retryable:
        Exception types returned as failures immediately.

    Returns
    -------
    RetryOutcome
        Never raises for exceptions raised by *fn*; cancellation still
        propagates.
    """
    started = clock()
    last_error: Exception | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return RetryOutcome(value=await fn(), attempts=attempt)
        except non_retryable as exc:
            return RetryOutcome(value=None, attempts=attempt, error=exc)
        except Exception as exc:
            last_error = exc

        if attempt >= policy.max_attempts:
            break

        delay = policy.next_delay(attempt)
        if deadline is not None and clock() - started + delay >= deadline:
            logger.warning(
                "%s timed out after %d attempt(s): %s",
                operation,
                attempt,
                type(last_error).__name__,
            )
            return RetryOutcome(value=None, attempts=attempt, error=last_error, timed_out=True)

        logger.warning(
            "Retry %d/%d of %s after %.1fs: %s",
            attempt,
            policy.max_attempts - 1,
            operation,
            delay,
            type(last_error).__name__,
        )
        await sleep(delay)

    return RetryOutcome(value=None, attempts=policy.max_attempts, error=last_error)
