"""Async REST client with timeouts, retry and circuit breaking."""

from __future__ import annotations

import logging
import random
from functools import lru_cache
from typing import Any, Awaitable, Callable, Sequence

import httpx
from pydantic import BaseModel, TypeAdapter

from .circuit_breaker import CircuitBreaker, CircuitSnapshot, CircuitState
from .config import RestClientConfig
from .orchestrator import CallOrchestrator
from .retry import RetryExecutor
from .tracing import RequestSpan, SpanListener

logger = logging.getLogger(__name__)


class ResilientRestClient:
    """Async client wrapping httpx with the configured resilience policies.

    Usage::

        config = load_client_config(Path("client.toml"))
        async with ResilientRestClient(config) as client:
            user = await client.get("https://api.example.com/users/1", User)

    Retry and circuit breaking are only applied when ``config.retry`` and
    ``config.circuit_breaker`` are set. The breaker is owned by this client
    and shared by all of its concurrent calls.

    Args:
        config: Client configuration. Defaults to RestClientConfig().
        transport: Optional httpx transport (e.g. ``httpx.MockTransport``).
        rng: Random source for retry jitter.
        sleep: Coroutine function used for backoff waits (seconds).
        span_listeners: Tracing listeners notified for every call.
    """

    def __init__(
        self,
        config: RestClientConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        span_listeners: Sequence[SpanListener] = (),
    ) -> None:
        self.config = config or RestClientConfig()
        self._span_listeners = tuple(span_listeners)

        timeout = httpx.Timeout(
            self.config.read_timeout_ms / 1000,
            connect=self.config.connection_timeout_ms / 1000,
        )
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

        self.retry_executor = (
            RetryExecutor(self.config.retry, rng=rng, sleep=sleep)
            if self.config.retry is not None
            else None
        )
        self.circuit_breaker = (
            CircuitBreaker(self.config.circuit_breaker, name=self.config.name)
            if self.config.circuit_breaker is not None
            else None
        )
        self._orchestrator = CallOrchestrator(
            circuit_breaker=self.circuit_breaker,
            retry_executor=self.retry_executor,
        )

    async def __aenter__(self) -> ResilientRestClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Exit the async context manager, closing the underlying HTTP client."""
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    @property
    def circuit_state(self) -> CircuitState | None:
        """Current breaker state, or None when no breaker is configured."""
        if self.circuit_breaker is None:
            return None
        return self.circuit_breaker.state

    def circuit_snapshot(self) -> CircuitSnapshot | None:
        """Breaker snapshot for health output, or None without a breaker."""
        if self.circuit_breaker is None:
            return None
        return self.circuit_breaker.snapshot()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(self, url: str, response_type: Any = None) -> Any:
        """Send a GET request and decode the response body.

        Args:
            url: Absolute URL to call.
            response_type: None for parsed JSON, ``str`` for text, ``bytes``
                for raw content, or any type pydantic can validate.

        Returns:
            The decoded response body.

        Raises:
            CircuitOpenError: If the circuit breaker is open.
            BadRequestError: If the server returns 400.
            NotFoundError: If the server returns 404.
            InternalServerError: If the server returns 500.
            RemoteServiceError: For any other status or transport failure.
        """
        return await self.request("GET", url, response_type=response_type)

    async def post(
        self,
        url: str,
        body: Any = None,
        response_type: Any = None,
    ) -> Any:
        """Send a POST request with a JSON body and decode the response.

        Pydantic models are dumped in JSON mode before sending. Errors are
        the same as for :meth:`get`.
        """
        return await self.request("POST", url, body=body, response_type=response_type)

    async def request(
        self,
        method: str,
        url: str,
        *,
        body: Any = None,
        response_type: Any = None,
    ) -> Any:
        """Send one logical request through the resilience policies.

        Each attempt re-sends the request; the decoded body of the first
        successful attempt is returned.
        """
        payload = body.model_dump(mode="json") if isinstance(body, BaseModel) else body

        async def attempt() -> Any:
            kwargs: dict[str, Any] = {}
            if payload is not None:
                kwargs["json"] = payload
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return _decode(response, response_type)

        span = RequestSpan.start(self._span_listeners)
        return await self._orchestrator.execute(url, attempt, span=span)


def _decode(response: httpx.Response, response_type: Any) -> Any:
    """Decode a successful response into the requested type."""
    if response_type is str:
        return response.text
    if response_type is bytes:
        return response.content
    if not response.content:
        return None
    data = response.json()
    if response_type is None:
        return data
    return _type_adapter(response_type).validate_python(data)


@lru_cache(maxsize=128)
def _type_adapter(response_type: Any) -> TypeAdapter[Any]:
    return TypeAdapter(response_type)
