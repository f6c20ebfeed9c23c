"""Resilient REST client.

Wraps outbound HTTP calls with connect/read timeouts, retry with
exponential backoff and jitter, and a circuit breaker per client.
"""

from __future__ import annotations

from .circuit_breaker import CircuitBreaker, CircuitSnapshot, CircuitState
from .client import ResilientRestClient
from .config import (
    CircuitBreakerConfig,
    RestClientConfig,
    RetryConfig,
    load_client_config,
    parse_client_config,
)
from .errors import (
    BadRequestError,
    CircuitOpenError,
    ErrorKind,
    InternalServerError,
    NotFoundError,
    RemoteErrorResponse,
    RemoteServiceError,
    classify_error,
)
from .orchestrator import CallOrchestrator
from .retry import RetryExecutor
from .tracing import RequestSpan, SpanListener

__all__ = [
    # Client
    "ResilientRestClient",
    "CallOrchestrator",
    # Policies
    "CircuitBreaker",
    "CircuitSnapshot",
    "CircuitState",
    "RetryExecutor",
    # Config
    "CircuitBreakerConfig",
    "RestClientConfig",
    "RetryConfig",
    "load_client_config",
    "parse_client_config",
    # Errors
    "BadRequestError",
    "CircuitOpenError",
    "ErrorKind",
    "InternalServerError",
    "NotFoundError",
    "RemoteErrorResponse",
    "RemoteServiceError",
    "classify_error",
    # Tracing
    "RequestSpan",
    "SpanListener",
]
