"""Client configuration for resilient REST calls.

Settings live under a ``[rest_client]`` table in a TOML file, with optional
``[rest_client.retry]`` and ``[rest_client.circuit_breaker]`` sub-tables.
A missing sub-table disables that policy.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_SECTION = "rest_client"


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy with exponential backoff and multiplicative jitter.

    Attributes:
        max_attempts: Total attempts per call, the first one included.
        base_delay_ms: Delay before the first retry.
        max_delay_ms: Cap applied to the backoff before jitter.
        jitter_factor: Jitter amplitude (0.2 = +/-20% variation).
    """

    max_attempts: int = 3
    base_delay_ms: int = 200
    max_delay_ms: int = 2000
    jitter_factor: float = 0.2


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Circuit breaker thresholds.

    Attributes:
        failure_threshold: Consecutive failed calls that open the circuit.
        open_duration_ms: Time the circuit stays open before a probe.
    """

    failure_threshold: int = 3
    open_duration_ms: int = 10_000


@dataclass(frozen=True)
class RestClientConfig:
    """Configuration for one resilient REST client.

    Loaded from TOML via load_client_config().
    """

    name: str = "default"
    connection_timeout_ms: int = 5000
    read_timeout_ms: int = 5000
    retry: RetryConfig | None = None
    circuit_breaker: CircuitBreakerConfig | None = None


def load_client_config(path: Path) -> RestClientConfig:
    """Load client config from a TOML file.

    Args:
        path: Path to the TOML file.

    Returns:
        Parsed RestClientConfig.

    Raises:
        FileNotFoundError: If the file is missing.
        ValueError: On invalid, empty, or corrupt TOML.
    """
    if not path.exists():
        msg = f"Client config not found: {path}"
        raise FileNotFoundError(msg)

    content = path.read_text(encoding="utf-8")
    if not content.strip():
        msg = f"Config file is empty: {path}"
        raise ValueError(msg)

    try:
        data = tomllib.loads(content)
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {path}: {exc}"
        raise ValueError(msg) from exc

    config = parse_client_config(data)
    logger.debug("Loaded client config '%s' from %s", config.name, path)
    return config


def parse_client_config(data: dict[str, Any]) -> RestClientConfig:
    """Parse raw TOML data into a RestClientConfig.

    Unknown fields are silently ignored for forward compatibility.
    """
    section = data.get(_SECTION, {})
    if not isinstance(section, dict):
        msg = f"[{_SECTION}] section must be a table"
        raise ValueError(msg)

    retry: RetryConfig | None = None
    retry_data = section.get("retry")
    if retry_data is not None:
        if not isinstance(retry_data, dict):
            msg = f"[{_SECTION}.retry] section must be a table"
            raise ValueError(msg)
        defaults = RetryConfig()
        retry = RetryConfig(
            max_attempts=_as_int(retry_data, "max_attempts", defaults.max_attempts),
            base_delay_ms=_as_int(retry_data, "base_delay_ms", defaults.base_delay_ms),
            max_delay_ms=_as_int(retry_data, "max_delay_ms", defaults.max_delay_ms),
            jitter_factor=_as_float(retry_data, "jitter_factor", defaults.jitter_factor),
        )

    breaker: CircuitBreakerConfig | None = None
    breaker_data = section.get("circuit_breaker")
    if breaker_data is not None:
        if not isinstance(breaker_data, dict):
            msg = f"[{_SECTION}.circuit_breaker] section must be a table"
            raise ValueError(msg)
        breaker_defaults = CircuitBreakerConfig()
        breaker = CircuitBreakerConfig(
            failure_threshold=_as_int(
                breaker_data, "failure_threshold", breaker_defaults.failure_threshold
            ),
            open_duration_ms=_as_int(
                breaker_data, "open_duration_ms", breaker_defaults.open_duration_ms
            ),
        )

    config = RestClientConfig(
        name=str(section.get("name", "default")),
        connection_timeout_ms=_as_int(section, "connection_timeout_ms", 5000),
        read_timeout_ms=_as_int(section, "read_timeout_ms", 5000),
        retry=retry,
        circuit_breaker=breaker,
    )
    validate_config(config)
    return config


def validate_config(config: RestClientConfig) -> None:
    """Validate config values.

    Raises:
        ValueError: On invalid configuration.
    """
    if not config.name or not config.name.strip():
        msg = "rest_client.name must not be empty"
        raise ValueError(msg)
    if config.connection_timeout_ms <= 0:
        msg = f"connection_timeout_ms must be positive, got {config.connection_timeout_ms}"
        raise ValueError(msg)
    if config.read_timeout_ms <= 0:
        msg = f"read_timeout_ms must be positive, got {config.read_timeout_ms}"
        raise ValueError(msg)

    retry = config.retry
    if retry is not None:
        if retry.max_attempts < 1:
            msg = f"retry.max_attempts must be >= 1, got {retry.max_attempts}"
            raise ValueError(msg)
        if retry.base_delay_ms < 0 or retry.max_delay_ms < 0:
            msg = "retry delays must not be negative"
            raise ValueError(msg)
        if retry.max_delay_ms < retry.base_delay_ms:
            msg = (
                f"retry.max_delay_ms ({retry.max_delay_ms}) must be >= "
                f"retry.base_delay_ms ({retry.base_delay_ms})"
            )
            raise ValueError(msg)
        if not 0.0 <= retry.jitter_factor <= 1.0:
            msg = f"retry.jitter_factor must be within [0, 1], got {retry.jitter_factor}"
            raise ValueError(msg)

    breaker = config.circuit_breaker
    if breaker is not None:
        if breaker.failure_threshold < 1:
            msg = (
                "circuit_breaker.failure_threshold must be >= 1, "
                f"got {breaker.failure_threshold}"
            )
            raise ValueError(msg)
        if breaker.open_duration_ms < 0:
            msg = (
                "circuit_breaker.open_duration_ms must not be negative, "
                f"got {breaker.open_duration_ms}"
            )
            raise ValueError(msg)


def generate_toml(config: RestClientConfig) -> str:
    """Generate TOML string from a RestClientConfig.

    Sub-tables are only written for the policies that are enabled.
    """
    lines = [
        f"[{_SECTION}]",
        f'name = "{_escape_toml_string(config.name)}"',
        f"connection_timeout_ms = {config.connection_timeout_ms}",
        f"read_timeout_ms = {config.read_timeout_ms}",
        "",
    ]
    if config.retry is not None:
        lines += [
            f"[{_SECTION}.retry]",
            f"max_attempts = {config.retry.max_attempts}",
            f"base_delay_ms = {config.retry.base_delay_ms}",
            f"max_delay_ms = {config.retry.max_delay_ms}",
            f"jitter_factor = {float(config.retry.jitter_factor)!r}",
            "",
        ]
    if config.circuit_breaker is not None:
        lines += [
            f"[{_SECTION}.circuit_breaker]",
            f"failure_threshold = {config.circuit_breaker.failure_threshold}",
            f"open_duration_ms = {config.circuit_breaker.open_duration_ms}",
            "",
        ]
    return "\n".join(lines)


def write_default_config(path: Path, *, force: bool = False) -> RestClientConfig:
    """Write a config file with both policies enabled at their defaults.

    Raises:
        FileExistsError: If the file exists and force=False.
    """
    if path.exists() and not force:
        msg = f"Config already exists: {path}"
        raise FileExistsError(msg)

    config = RestClientConfig(
        retry=RetryConfig(),
        circuit_breaker=CircuitBreakerConfig(),
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(generate_toml(config), encoding="utf-8")
    logger.info("Wrote default client config to %s", path)
    return config


def _as_int(table: dict[str, Any], key: str, default: int) -> int:
    value = table.get(key, default)
    if isinstance(value, bool):
        msg = f"{key} must be an integer, got {value!r}"
        raise ValueError(msg)
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        msg = f"{key} must be an integer, got {value!r}"
        raise ValueError(msg) from exc


def _as_float(table: dict[str, Any], key: str, default: float) -> float:
    value = table.get(key, default)
    if isinstance(value, bool):
        msg = f"{key} must be a number, got {value!r}"
        raise ValueError(msg)
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        msg = f"{key} must be a number, got {value!r}"
        raise ValueError(msg) from exc


def _escape_toml_string(value: str) -> str:
    """Escape special characters for TOML string values."""
    return value.replace("\\", "\\\\").replace('"', '\\"')
