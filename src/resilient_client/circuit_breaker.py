"""Circuit breaker for outbound calls to one remote endpoint.

The circuit breaker has three states:
- CLOSED: Normal operation, failures are counted
- OPEN: Circuit tripped, calls are rejected without touching the network
- HALF_OPEN: Cool-down elapsed, a probe call is testing recovery
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from .config import CircuitBreakerConfig

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Possible states for a circuit breaker."""

    CLOSED = "closed"  # Normal operation - requests allowed
    OPEN = "open"  # Circuit tripped - requests blocked
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass(frozen=True)
class CircuitSnapshot:
    """Point-in-time view of a circuit breaker for health output."""

    name: str
    state: CircuitState
    failure_count: int
    failure_threshold: int
    open_duration_ms: int
    time_until_retry_ms: float

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "open_duration_ms": self.open_duration_ms,
            "time_until_retry_ms": round(self.time_until_retry_ms, 1),
        }


class CircuitBreaker:
    """Failure tracker and gate shared by every caller of one client.

    Usage:
        breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=3))

        if await breaker.allow():
            try:
                result = await call_remote()
                await breaker.record_success()
            except Exception:
                await breaker.record_failure()
                raise

    ``allow``, ``record_success``, ``record_failure`` and ``reset`` share a
    single lock. The read-only properties do not take it.

    Attributes:
        name: Identifier used in log output.
        config: Threshold and open duration.
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        *,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the circuit breaker.

        Args:
            config: Threshold settings. Uses CircuitBreakerConfig() if None.
            name: Identifier used in log output.
            clock: Monotonic time source in seconds.
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_at: float | None = None

        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        """Return the current circuit state."""
        return self._state

    @property
    def failure_count(self) -> int:
        """Return the consecutive failure count."""
        return self._failure_count

    @property
    def last_failure_at(self) -> float | None:
        """Clock reading of the most recent recorded failure."""
        return self._last_failure_at

    @property
    def is_open(self) -> bool:
        """Check if circuit is currently open (blocking requests)."""
        return self._state == CircuitState.OPEN

    @property
    def is_closed(self) -> bool:
        """Check if circuit is currently closed (normal operation)."""
        return self._state == CircuitState.CLOSED

    @property
    def _open_duration_s(self) -> float:
        return self.config.open_duration_ms / 1000

    async def allow(self) -> bool:
        """Check whether a call may proceed.

        An OPEN circuit whose cool-down has elapsed moves to HALF_OPEN and
        lets the caller through as the probe. HALF_OPEN does not block.

        Returns:
            True if the call is allowed, False if blocked.
        """
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if self._cooldown_elapsed():
                    self._transition_to(CircuitState.HALF_OPEN)
                    return True
                return False
            return True

    async def record_success(self) -> None:
        """Record a successful call: clears failures and closes the circuit."""
        async with self._lock:
            self._failure_count = 0
            self._transition_to(CircuitState.CLOSED)

    async def record_failure(self) -> None:
        """Record a failed call and open the circuit when warranted.

        A failure while HALF_OPEN re-opens the circuit at once and restarts
        the cool-down, whatever the counter says.
        """
        async with self._lock:
            self._failure_count += 1
            self._last_failure_at = self._clock()

            logger.debug(
                "Circuit %s failure %d/%d",
                self.name,
                self._failure_count,
                self.config.failure_threshold,
            )

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif self._failure_count >= self.config.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    async def reset(self) -> None:
        """Force the circuit back to CLOSED with no recorded failures."""
        async with self._lock:
            self._failure_count = 0
            self._last_failure_at = None
            self._transition_to(CircuitState.CLOSED)
            logger.info("Circuit %s manually reset", self.name)

    def get_time_until_retry(self) -> float:
        """Get seconds until an OPEN circuit admits a probe."""
        last_failure_at = self._last_failure_at
        if self._state != CircuitState.OPEN or last_failure_at is None:
            return 0.0
        remaining = last_failure_at + self._open_duration_s - self._clock()
        return max(0.0, remaining)

    def snapshot(self) -> CircuitSnapshot:
        """Return the current state without taking the lock."""
        return CircuitSnapshot(
            name=self.name,
            state=self._state,
            failure_count=self._failure_count,
            failure_threshold=self.config.failure_threshold,
            open_duration_ms=self.config.open_duration_ms,
            time_until_retry_ms=self.get_time_until_retry() * 1000,
        )

    def _cooldown_elapsed(self) -> bool:
        """Check if the open duration has passed (called under lock)."""
        if self._last_failure_at is None:
            return True
        return self._clock() >= self._last_failure_at + self._open_duration_s

    def _transition_to(self, new_state: CircuitState) -> None:
        """Move to a new state (called under lock)."""
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state

        if new_state == CircuitState.OPEN:
            logger.warning(
                "Circuit %s OPENED after %d failures (open for %dms)",
                self.name,
                self._failure_count,
                self.config.open_duration_ms,
            )
        else:
            logger.info(
                "Circuit %s: %s -> %s",
                self.name,
                old_state.value,
                new_state.value,
            )
