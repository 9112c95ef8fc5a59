"""Jittered exponential backoff for calls to shared collaborators."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with jittered exponential backoff.

    ``max_attempts`` counts the first call, so 5 means one call plus up to
    four retries.
    """

    max_attempts: int = 5
    initial_delay: float = 0.2
    max_delay: float = 5.0
    exponential_base: float = 2.0
    jitter: float = 0.1

    def delay_for(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        delay = min(self.initial_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter:
            spread = delay * self.jitter
            delay += (rng or random).uniform(-spread, spread)
        return max(delay, 0.0)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...],
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
) -> T:
    """Run ``operation`` until it succeeds or the policy is exhausted.

    Only exceptions in ``retry_on`` are retried; anything else propagates at
    once, as does a retryable one that ``should_retry`` rejects. The last
    retryable exception is re-raised after the final attempt.
    Backoff sleeps are ordinary awaits and therefore cancellable.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except retry_on as e:
            if should_retry is not None and not should_retry(e):
                raise
            attempt += 1
            if attempt >= policy.max_attempts:
                logger.error(
                    f"{description} failed after {attempt} attempt(s): {type(e).__name__}: {e}"
                )
                raise
            delay = policy.delay_for(attempt - 1)
            logger.warning(
                f"{description} attempt {attempt}/{policy.max_attempts} failed "
                f"({type(e).__name__}: {e}); retrying in {delay:.2f}s"
            )
            await sleep(delay)
