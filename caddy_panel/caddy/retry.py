"""
Bounded retry with a capped, linearly growing delay.
"""
import asyncio
import logging
from dataclasses import dataclass
from collections.abc import Awaitable, Callable
from typing import TypeVar

from caddy_panel.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 5.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_retries=settings.CADDY_RETRY_MAX,
            initial_delay=settings.CADDY_RETRY_INITIAL_DELAY,
            max_delay=settings.CADDY_RETRY_MAX_DELAY,
        )

    @classmethod
    def immediate(cls, max_retries: int = 0) -> "RetryPolicy":
        """Policy without any waiting, for tests and one-shot calls."""
        return cls(max_retries=max_retries, initial_delay=0.0, max_delay=0.0)

    def delays(self):
        """Yield the wait before each retry: initial, initial*2, ... capped at max_delay."""
        delay = min(self.initial_delay, self.max_delay)
        for _ in range(max(self.max_retries, 0)):
            yield delay
            delay = min(delay + self.initial_delay, self.max_delay)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await `operation()` until it succeeds, at most `policy.max_retries + 1` times.
    The last exception is re-raised once retries are exhausted.
    """
    delays = policy.delays()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            delay = next(delays, None)
            if delay is None:
                logger.error(f"[retry] Giving up after {attempt} attempts: {e}")
                raise
            logger.warning(f"[retry] Attempt {attempt} failed ({e}), retrying in {delay:.1f}s")
            await sleep(delay)
