"""
RetryingFetcher — bounded retry with backoff for remote reads and writes.

Only failures classified as transient are retried; terminal failures
propagate from the first attempt. After the last attempt the final error is
re-raised unchanged.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import random
from typing import Any, Awaitable, Callable

from .const import RETRY_ATTEMPTS, RETRY_BACKOFF, RETRY_DELAY, RETRY_JITTER, RETRY_MAX_DELAY
from .requests import classify_error

_LOGGER = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class RetryPolicy:
    """attempts counts every call, the first one included."""

    attempts: int = RETRY_ATTEMPTS
    delay: float = RETRY_DELAY
    backoff: float = RETRY_BACKOFF
    max_delay: float = RETRY_MAX_DELAY
    jitter: float = RETRY_JITTER

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")
        if self.backoff < 1:
            raise ValueError("backoff must be >= 1")
        if not 0 <= self.jitter <= 1:
            raise ValueError("jitter must be within [0, 1]")

    @classmethod
    def fixed(cls, attempts: int = RETRY_ATTEMPTS, delay: float = RETRY_DELAY) -> "RetryPolicy":
        """Constant delay between attempts, no jitter."""
        return cls(attempts=attempts, delay=delay, backoff=1.0, jitter=0.0)

    def base_delay(self, retry_number: int) -> float:
        """Delay before retry number retry_number (1-based), without jitter."""
        return min(self.delay * self.backoff ** (retry_number - 1), self.max_delay)


class RetryingFetcher:
    """
    Wraps an async operation with the retry policy.

    sleep and rand are injectable so tests can run without real delays.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        classify: Callable[[BaseException], bool] = classify_error,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._classify = classify
        self._sleep = sleep
        self._rand = rand

    def delay_for(self, retry_number: int) -> float:
        base = self.policy.base_delay(retry_number)
        if self.policy.jitter:
            base += base * self.policy.jitter * self._rand()
        return base

    async def run(self, operation: Callable[[], Awaitable[Any]], description: str = "remote call") -> Any:
        """
        Invoke operation() until it succeeds or the policy is exhausted.

        Raises:
            The last exception raised by operation().
        """
        attempts = self.policy.attempts
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except Exception as exc:  # noqa: BLE001
                if not self._classify(exc):
                    _LOGGER.debug("%s failed with a terminal error: %s", description, exc)
                    raise
                if attempt >= attempts:
                    _LOGGER.warning("%s failed after %s attempts: %s", description, attempts, exc)
                    raise
                wait = self.delay_for(attempt)
                _LOGGER.warning(
                    "Retry %s/%s for %s in %.2fs after error: %s",
                    attempt, attempts - 1, description, wait, exc,
                )
                await self._sleep(wait)
        # Unreachable: the loop either returns or raises
        raise RuntimeError("retry loop exited without result")
