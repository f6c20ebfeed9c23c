"""Request spans for attributing log lines to one logical call.

A span never influences control flow: listener errors are logged and
dropped.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Protocol, Sequence

logger = logging.getLogger(__name__)


class SpanListener(Protocol):
    """Receives tracing notifications for each call."""

    def on_start(self, span_id: str, url: str) -> None: ...

    def on_retry(self, span_id: str, attempt: int, url: str) -> None: ...

    def on_success(self, span_id: str, url: str, duration_ms: float) -> None: ...

    def on_failure(
        self, span_id: str, url: str, duration_ms: float, exc: BaseException
    ) -> None: ...


class RequestSpan:
    """One logical outbound call, across all of its attempts.

    Attributes:
        span_id: Unique identifier (uuid4).
        started_at: Wall-clock start time (UTC).
    """

    def __init__(self, listeners: Sequence[SpanListener] = ()) -> None:
        self.span_id = str(uuid.uuid4())
        self.started_at = datetime.now(timezone.utc)
        self._started = time.monotonic()
        self._listeners = tuple(listeners)

    @classmethod
    def start(cls, listeners: Sequence[SpanListener] = ()) -> RequestSpan:
        return cls(listeners)

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since the span started."""
        return (time.monotonic() - self._started) * 1000

    def log_start(self, url: str) -> None:
        logger.info(
            "[SPAN %s] Started call to %s at %s",
            self.span_id,
            url,
            self.started_at.isoformat(),
        )
        self._notify("on_start", self.span_id, url)

    def log_retry(self, attempt: int, url: str) -> None:
        logger.info("[SPAN %s] Retry attempt %d for %s", self.span_id, attempt, url)
        self._notify("on_retry", self.span_id, attempt, url)

    def log_success(self, url: str) -> None:
        duration_ms = self.elapsed_ms
        logger.info(
            "[SPAN %s] Successfully completed call to %s in %d ms",
            self.span_id,
            url,
            duration_ms,
        )
        self._notify("on_success", self.span_id, url, duration_ms)

    def log_failure(self, url: str, exc: BaseException) -> None:
        duration_ms = self.elapsed_ms
        logger.error(
            "[SPAN %s] Failed call to %s after %d ms - Error: %s",
            self.span_id,
            url,
            duration_ms,
            exc,
        )
        self._notify("on_failure", self.span_id, url, duration_ms, exc)

    def _notify(self, hook: str, *args: object) -> None:
        for listener in self._listeners:
            try:
                getattr(listener, hook)(*args)
            except Exception:
                logger.warning(
                    "[SPAN %s] Span listener %s.%s raised",
                    self.span_id,
                    type(listener).__name__,
                    hook,
                    exc_info=True,
                )
