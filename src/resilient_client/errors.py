"""Error payloads, exception hierarchy and failure classification.

Every failed call surfaces as a :class:`RemoteServiceError` (or one of its
subclasses) carrying a :class:`RemoteErrorResponse`. Classification is a
table lookup on the HTTP status code; anything that never produced a
response (timeouts, refused connections, DNS failures) is a plain
:class:`RemoteServiceError`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

CIRCUIT_OPEN_MESSAGE = "Circuit breaker is open - Skipping call"
UNEXPECTED_ERROR_LABEL = "Unexpected Error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RemoteErrorResponse(BaseModel):
    """Error payload describing one failed outbound call.

    Serializes to ``{timestamp, status, error, message, url}``.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=_utcnow)
    status: int
    error: str
    message: str
    url: str

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible dict with an ISO-8601 timestamp."""
        return self.model_dump(mode="json")


class ErrorKind(Enum):
    """Closed set of failure kinds a call can surface."""

    BAD_REQUEST = "bad_request"
    NOT_FOUND = "not_found"
    INTERNAL_SERVER_ERROR = "internal_server_error"
    REMOTE_SERVICE_ERROR = "remote_service_error"
    CIRCUIT_OPEN = "circuit_open"

    @classmethod
    def from_status(cls, status_code: int) -> ErrorKind:
        """Map an HTTP status code to its kind.

        CIRCUIT_OPEN is never derived from a response, so a real 503 maps
        to REMOTE_SERVICE_ERROR like every other unnamed status.
        """
        return _STATUS_KINDS.get(status_code, cls.REMOTE_SERVICE_ERROR)


_STATUS_KINDS: dict[int, ErrorKind] = {
    400: ErrorKind.BAD_REQUEST,
    404: ErrorKind.NOT_FOUND,
    500: ErrorKind.INTERNAL_SERVER_ERROR,
}


class RemoteServiceError(Exception):
    """Base error for failed outbound calls.

    Attributes:
        error_response: The payload describing the failure.
    """

    kind = ErrorKind.REMOTE_SERVICE_ERROR

    def __init__(self, error_response: RemoteErrorResponse) -> None:
        self.error_response = error_response
        super().__init__(error_response.message)

    def __reduce__(self) -> tuple[Any, ...]:
        return (type(self), (self.error_response,))

    @property
    def status_code(self) -> int:
        """HTTP status recorded in the error payload."""
        return self.error_response.status

    @property
    def url(self) -> str:
        """Target URL of the failed call."""
        return self.error_response.url


class BadRequestError(RemoteServiceError):
    """Raised when the remote service answers 400 Bad Request."""

    kind = ErrorKind.BAD_REQUEST


class NotFoundError(RemoteServiceError):
    """Raised when the remote service answers 404 Not Found."""

    kind = ErrorKind.NOT_FOUND


class InternalServerError(RemoteServiceError):
    """Raised when the remote service answers 500 Internal Server Error."""

    kind = ErrorKind.INTERNAL_SERVER_ERROR


class CircuitOpenError(RemoteServiceError):
    """Raised without calling the network while the circuit is open."""

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, url: str) -> None:
        super().__init__(
            RemoteErrorResponse(
                status=503,
                error="Service Unavailable",
                message=CIRCUIT_OPEN_MESSAGE,
                url=url,
            )
        )

    def __reduce__(self) -> tuple[Any, ...]:
        # state carries the original timestamp
        return (type(self), (self.url,), {"error_response": self.error_response})


_KIND_ERRORS: dict[ErrorKind, type[RemoteServiceError]] = {
    ErrorKind.BAD_REQUEST: BadRequestError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.INTERNAL_SERVER_ERROR: InternalServerError,
    ErrorKind.REMOTE_SERVICE_ERROR: RemoteServiceError,
}


def error_for_status(
    status_code: int,
    *,
    url: str,
    message: str,
    error: str | None = None,
) -> RemoteServiceError:
    """Build the classified error for an HTTP status code."""
    if error is None:
        error = _reason_phrase(status_code)
    error_response = RemoteErrorResponse(
        status=status_code,
        error=error,
        message=message,
        url=url,
    )
    error_cls = _KIND_ERRORS[ErrorKind.from_status(status_code)]
    return error_cls(error_response)


def classify_error(exc: BaseException, url: str) -> RemoteServiceError:
    """Map a raw failure from an attempt into a classified error.

    Args:
        exc: The exception raised by the last attempt.
        url: Target URL of the call, recorded in the payload.

    Returns:
        The error to raise to the caller. Already classified errors are
        returned unchanged.
    """
    if isinstance(exc, RemoteServiceError):
        return exc

    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        return error_for_status(
            response.status_code,
            url=url,
            message=_response_text(response),
            error=response.reason_phrase or None,
        )

    return RemoteServiceError(
        RemoteErrorResponse(
            status=500,
            error=UNEXPECTED_ERROR_LABEL,
            message=str(exc) or type(exc).__name__,
            url=url,
        )
    )


def _reason_phrase(status_code: int) -> str:
    phrase = httpx.codes.get_reason_phrase(status_code)
    return phrase or f"HTTP {status_code}"


def _response_text(response: httpx.Response) -> str:
    try:
        return response.text
    except httpx.ResponseNotRead:
        return ""
