"""Tests for the call orchestrator.

Covers the ordering of the breaker gate, retry loop, accounting and
classification, including the reference scenarios:

A. threshold 2, two failing calls open the breaker; the third fails fast.
B. 3 attempts, 200/1000 ms backoff, two failures then success.
C. no policies, a failing operation is invoked once.
D. a 404 on the last attempt surfaces as NotFoundError.
"""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from resilient_client.circuit_breaker import CircuitBreaker, CircuitState
from resilient_client.config import CircuitBreakerConfig, RetryConfig
from resilient_client.errors import (
    CircuitOpenError,
    ErrorKind,
    InternalServerError,
    NotFoundError,
    RemoteServiceError,
)
from resilient_client.orchestrator import CallOrchestrator
from resilient_client.retry import RetryExecutor
from resilient_client.tracing import RequestSpan
from tests.conftest import FakeClock, RecordingSleep

URL = "http://svc.test/items"


def _status_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", URL)
    response = httpx.Response(status_code, text=f"status {status_code}", request=request)
    return httpx.HTTPStatusError("error", request=request, response=response)


class _Operation:
    """Scripted operation: raises or returns the next outcome per call."""

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self) -> Any:
        self.calls += 1
        outcome = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _retry(sleep: RecordingSleep, **overrides: Any) -> RetryExecutor:
    values: dict[str, Any] = {
        "max_attempts": 3,
        "base_delay_ms": 200,
        "max_delay_ms": 1000,
        "jitter_factor": 0.0,
    }
    values.update(overrides)
    return RetryExecutor(RetryConfig(**values), sleep=sleep)


class TestScenarios:
    """Reference scenarios for composed behavior."""

    async def test_a_breaker_opens_and_fails_fast(self, clock: FakeClock) -> None:
        breaker = CircuitBreaker(
            CircuitBreakerConfig(failure_threshold=2, open_duration_ms=5000), clock=clock
        )
        orchestrator = CallOrchestrator(circuit_breaker=breaker)
        operation = _Operation(httpx.ConnectError("refused"))

        for _ in range(2):
            with pytest.raises(RemoteServiceError):
                await orchestrator.execute(URL, operation)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError) as exc_info:
            await orchestrator.execute(URL, operation)

        assert operation.calls == 2
        assert exc_info.value.kind is ErrorKind.CIRCUIT_OPEN
        assert exc_info.value.error_response.status == 503
        assert exc_info.value.error_response.url == URL

    async def test_b_retries_then_succeeds(self, recording_sleep: RecordingSleep) -> None:
        orchestrator = CallOrchestrator(retry_executor=_retry(recording_sleep))
        operation = _Operation(
            httpx.ConnectError("down"), httpx.ReadTimeout("slow"), {"id": 1}
        )

        result = await orchestrator.execute(URL, operation)

        assert result == {"id": 1}
        assert operation.calls == 3
        assert len(recording_sleep.delays) == 2
        assert recording_sleep.total >= 0.6

    async def test_c_no_policies_single_invocation(self) -> None:
        orchestrator = CallOrchestrator()
        operation = _Operation(httpx.ConnectError("refused"))

        with pytest.raises(RemoteServiceError) as exc_info:
            await orchestrator.execute(URL, operation)

        assert operation.calls == 1
        assert type(exc_info.value) is RemoteServiceError
        assert exc_info.value.kind is ErrorKind.REMOTE_SERVICE_ERROR
        assert "Circuit breaker" not in exc_info.value.error_response.message

    async def test_d_not_found_on_last_attempt(self, recording_sleep: RecordingSleep) -> None:
        orchestrator = CallOrchestrator(retry_executor=_retry(recording_sleep))
        operation = _Operation(_status_error(500), _status_error(502), _status_error(404))

        with pytest.raises(NotFoundError) as exc_info:
            await orchestrator.execute(URL, operation)

        assert operation.calls == 3
        assert exc_info.value.error_response.status == 404


class TestAccounting:
    """Breaker success/failure accounting around the retry loop."""

    async def test_success_after_retries_records_success(
        self, clock: FakeClock, recording_sleep: RecordingSleep
    ) -> None:
        breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=2), clock=clock)
        await breaker.record_failure()
        orchestrator = CallOrchestrator(
            circuit_breaker=breaker, retry_executor=_retry(recording_sleep)
        )

        await orchestrator.execute(URL, _Operation(httpx.ConnectError("x"), "ok"))

        assert breaker.failure_count == 0
        assert breaker.state == CircuitState.CLOSED

    async def test_exhausted_retries_record_one_failure(
        self, clock: FakeClock, recording_sleep: RecordingSleep
    ) -> None:
        breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=5), clock=clock)
        orchestrator = CallOrchestrator(
            circuit_breaker=breaker, retry_executor=_retry(recording_sleep)
        )
        operation = _Operation(httpx.ConnectError("x"))

        with pytest.raises(RemoteServiceError):
            await orchestrator.execute(URL, operation)

        assert operation.calls == 3
        assert breaker.failure_count == 1

    async def test_denied_call_records_nothing(self, clock: FakeClock) -> None:
        breaker = CircuitBreaker(
            CircuitBreakerConfig(failure_threshold=1, open_duration_ms=1000), clock=clock
        )
        await breaker.record_failure()
        last_failure_at = breaker.last_failure_at
        orchestrator = CallOrchestrator(circuit_breaker=breaker)

        with pytest.raises(CircuitOpenError):
            await orchestrator.execute(URL, _Operation("ok"))

        assert breaker.failure_count == 1
        assert breaker.last_failure_at == last_failure_at

    async def test_denied_call_consumes_no_retry_attempts(
        self, clock: FakeClock, recording_sleep: RecordingSleep
    ) -> None:
        breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=1), clock=clock)
        await breaker.record_failure()
        orchestrator = CallOrchestrator(
            circuit_breaker=breaker, retry_executor=_retry(recording_sleep)
        )
        operation = _Operation("ok")

        with pytest.raises(CircuitOpenError):
            await orchestrator.execute(URL, operation)

        assert operation.calls == 0
        assert recording_sleep.delays == []

    async def test_half_open_probe_success_closes(self, clock: FakeClock) -> None:
        breaker = CircuitBreaker(
            CircuitBreakerConfig(failure_threshold=1, open_duration_ms=1000), clock=clock
        )
        orchestrator = CallOrchestrator(circuit_breaker=breaker)

        with pytest.raises(RemoteServiceError):
            await orchestrator.execute(URL, _Operation(httpx.ConnectError("x")))
        clock.advance(1.0)

        assert await orchestrator.execute(URL, _Operation("recovered")) == "recovered"
        assert breaker.state == CircuitState.CLOSED

    async def test_half_open_probe_failure_reopens(self, clock: FakeClock) -> None:
        breaker = CircuitBreaker(
            CircuitBreakerConfig(failure_threshold=3, open_duration_ms=1000), clock=clock
        )
        orchestrator = CallOrchestrator(circuit_breaker=breaker)
        failing = _Operation(httpx.ConnectError("x"))

        for _ in range(3):
            with pytest.raises(RemoteServiceError):
                await orchestrator.execute(URL, failing)
        clock.advance(1.0)

        with pytest.raises(RemoteServiceError):
            await orchestrator.execute(URL, failing)
        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await orchestrator.execute(URL, failing)
        assert failing.calls == 4


class TestClassification:
    """Surfaced errors and exception chaining."""

    async def test_internal_server_error_chained_to_cause(self) -> None:
        cause = _status_error(500)
        orchestrator = CallOrchestrator()

        with pytest.raises(InternalServerError) as exc_info:
            await orchestrator.execute(URL, _Operation(cause))

        assert exc_info.value.__cause__ is cause
        assert exc_info.value.error_response.message == "status 500"

    async def test_already_classified_error_propagates_unchanged(self) -> None:
        original = CircuitOpenError("http://downstream")
        orchestrator = CallOrchestrator()

        with pytest.raises(CircuitOpenError) as exc_info:
            await orchestrator.execute(URL, _Operation(original))

        assert exc_info.value is original

    async def test_span_is_notified(self) -> None:
        events: list[str] = []

        class _Listener:
            def on_start(self, span_id: str, url: str) -> None:
                events.append("start")

            def on_retry(self, span_id: str, attempt: int, url: str) -> None:
                events.append(f"retry {attempt}")

            def on_success(self, span_id: str, url: str, duration_ms: float) -> None:
                events.append("success")

            def on_failure(
                self, span_id: str, url: str, duration_ms: float, exc: BaseException
            ) -> None:
                events.append("failure")

        sleep = RecordingSleep()
        orchestrator = CallOrchestrator(retry_executor=_retry(sleep))
        span = RequestSpan.start([_Listener()])

        await orchestrator.execute(
            URL, _Operation(httpx.ConnectError("x"), httpx.ConnectError("y"), "ok"), span=span
        )

        assert events == ["start", "retry 2", "retry 3", "success"]
