"""Composition of circuit breaker, retry and error classification.

One call goes through these steps, in order:

1. The circuit breaker (if any) is asked for permission. A denied call
   raises CircuitOpenError without invoking the operation.
2. The operation runs through the retry executor (if any), else once.
3. Success is recorded on the breaker before the result is returned.
4. A final failure is recorded on the breaker, classified, and raised.

Steps 2-4 run in a shielded task: cancelling the caller abandons the wait
but not the in-flight attempt or its breaker update.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, TypeVar

from .circuit_breaker import CircuitBreaker
from .errors import CircuitOpenError, classify_error
from .retry import Operation, RetryExecutor
from .tracing import RequestSpan

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CallOrchestrator:
    """Runs outbound operations under the configured resilience policies.

    Args:
        circuit_breaker: Breaker shared by every call, or None to allow all.
        retry_executor: Retry policy, or None to run each operation once.
    """

    def __init__(
        self,
        circuit_breaker: CircuitBreaker | None = None,
        retry_executor: RetryExecutor | None = None,
    ) -> None:
        self.circuit_breaker = circuit_breaker
        self.retry_executor = retry_executor
        self._in_flight: set[asyncio.Task[Any]] = set()

    async def execute(
        self,
        target: str,
        operation: Operation[T],
        span: RequestSpan | None = None,
    ) -> T:
        """Run one logical call against ``target``.

        Args:
            target: URL (or other identifier) recorded in errors and logs.
            operation: Zero-argument callable performing one remote attempt.
            span: Span to attribute log lines to. A new one if None.

        Returns:
            The operation's result.

        Raises:
            CircuitOpenError: If the circuit breaker denied the call.
            RemoteServiceError: The classified final failure.
        """
        span = span or RequestSpan.start()
        span.log_start(target)

        breaker = self.circuit_breaker
        if breaker is not None and not await breaker.allow():
            logger.warning("Circuit breaker is open - Skipping call to %s", target)
            denied = CircuitOpenError(target)
            span.log_failure(target, denied)
            raise denied

        task = asyncio.create_task(self._run(target, operation, span))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return await asyncio.shield(task)

    async def _run(self, target: str, operation: Operation[T], span: RequestSpan) -> T:
        """Run the attempts, record the outcome on the breaker, classify failures."""
        breaker = self.circuit_breaker
        try:
            if self.retry_executor is not None:
                result = await self.retry_executor.execute_with_retry(
                    operation,
                    on_retry=lambda attempt, _exc, _delay: span.log_retry(attempt + 1, target),
                )
            else:
                result = await operation()
        except Exception as exc:
            if breaker is not None:
                await breaker.record_failure()
            error = classify_error(exc, target)
            span.log_failure(target, error)
            if error is exc:
                raise
            raise error from exc

        if breaker is not None:
            await breaker.record_success()
        span.log_success(target)
        return result
