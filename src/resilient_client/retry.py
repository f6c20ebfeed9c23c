"""Retry with exponential backoff and multiplicative jitter."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from .config import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
RetryCallback = Callable[[int, BaseException, float], None]


class RetryExecutor:
    """Runs an operation up to ``max_attempts`` times.

    The delay after the ``a``-th failed attempt is::

        delay = min(base_delay_ms * 2 ** (a - 1), max_delay_ms)
        delay * (1 + uniform(-1, 1) * jitter_factor)

    Jitter is applied after the cap, so a delay may land slightly above
    ``max_delay_ms``.

    Args:
        config: Retry policy.
        rng: Random source for jitter. A fresh ``random.Random`` if None.
        sleep: Coroutine function taking seconds. Defaults to asyncio.sleep.
        retryable: Predicate deciding whether a failure is worth another
            attempt. Every exception is retried when None.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        retryable: Callable[[BaseException], bool] | None = None,
    ) -> None:
        self.config = config or RetryConfig()
        self._rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep
        self._retryable = retryable

    def compute_backoff_delay(self, attempt: int) -> float:
        """Return the delay in milliseconds after the given failed attempt.

        Args:
            attempt: 1-indexed count of failed attempts so far.
        """
        delay = self.config.base_delay_ms * (2 ** (attempt - 1))
        delay = min(delay, self.config.max_delay_ms)
        jitter = 1 + self._rng.uniform(-1.0, 1.0) * self.config.jitter_factor
        return delay * jitter

    async def execute_with_retry(
        self,
        operation: Operation[T],
        on_retry: RetryCallback | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds or the attempt budget is spent.

        Args:
            operation: Zero-argument callable returning an awaitable.
            on_retry: Called as ``on_retry(attempt, exc, delay_ms)`` before
                each backoff wait.

        Returns:
            The first successful result.

        Raises:
            Exception: The exception from the last attempt, unchanged.
        """
        attempts = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                attempts += 1
                if attempts >= self.config.max_attempts:
                    logger.warning(
                        "Max retry attempts (%d) exceeded: %s",
                        self.config.max_attempts,
                        exc,
                    )
                    raise
                if self._retryable is not None and not self._retryable(exc):
                    logger.debug(
                        "Not retrying %s after attempt %d",
                        type(exc).__name__,
                        attempts,
                    )
                    raise

                delay_ms = self.compute_backoff_delay(attempts)
                logger.debug(
                    "Call failed (%s). Retry %d/%d after %.0f ms",
                    type(exc).__name__,
                    attempts + 1,
                    self.config.max_attempts,
                    delay_ms,
                )
                if on_retry is not None:
                    on_retry(attempts, exc, delay_ms)
                await self._sleep(delay_ms / 1000)
