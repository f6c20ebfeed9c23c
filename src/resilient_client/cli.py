"""CLI for resilient REST calls.

Issues single requests under the configured retry and circuit breaker
policies, and manages client config files.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

import click

from .client import ResilientRestClient
from .config import (
    RestClientConfig,
    load_client_config,
    write_default_config,
)
from .errors import RemoteServiceError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="RESILIENT_CLIENT_CONFIG",
    help="Client config TOML (default: no retry, no circuit breaker)",
)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(verbose: bool) -> None:
    """Resilient REST client - HTTP calls with retry and circuit breaking."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@cli.command()
@click.argument("url")
@_config_option
def get(url: str, config_path: Path | None) -> None:
    """Send a GET request and print the response body."""
    config = _resolve_config(config_path)
    body = _run_call(config, "GET", url, None)
    click.echo(body)


@cli.command()
@click.argument("url")
@click.option("--data", "-d", default=None, help="JSON request body")
@_config_option
def post(url: str, data: str | None, config_path: Path | None) -> None:
    """Send a POST request with a JSON body and print the response body."""
    payload: Any = None
    if data is not None:
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as exc:
            click.echo(f"Error: invalid JSON body: {exc}", err=True)
            sys.exit(1)
    config = _resolve_config(config_path)
    body = _run_call(config, "POST", url, payload)
    click.echo(body)


@cli.group(name="config")
def config_group() -> None:
    """Client configuration commands."""
    pass


@config_group.command(name="show")
@_config_option
def config_show(config_path: Path | None) -> None:
    """Print the effective client configuration as JSON."""
    config = _resolve_config(config_path)
    click.echo(json.dumps(asdict(config), indent=2))


@config_group.command(name="init")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def config_init(path: Path, force: bool) -> None:
    """Write a config file with retry and circuit breaker enabled."""
    try:
        write_default_config(path, force=force)
    except FileExistsError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Wrote {path}")


def _resolve_config(config_path: Path | None) -> RestClientConfig:
    if config_path is None:
        return RestClientConfig()
    try:
        return load_client_config(config_path)
    except (FileNotFoundError, ValueError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


def _run_call(config: RestClientConfig, method: str, url: str, payload: Any) -> str:
    try:
        return asyncio.run(_call_async(config, method, url, payload))
    except RemoteServiceError as exc:
        click.echo(json.dumps(exc.error_response.to_dict(), indent=2), err=True)
        sys.exit(1)


async def _call_async(
    config: RestClientConfig, method: str, url: str, payload: Any
) -> str:
    """Async implementation shared by the request commands."""
    async with ResilientRestClient(config) as client:
        text: str = await client.request(method, url, body=payload, response_type=str)
        return text


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
