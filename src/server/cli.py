"""Command line entry point: run the backend server and administer locks."""

from __future__ import annotations

import sys
from dataclasses import replace
from typing import Optional

import click

from common.client import DEFAULT_BASE_URL, StateBackendClient, StateBackendClientError
from common.config import STORAGE_KINDS, BackendConfig
from common.logging_setup import LoggingConfig, configure_logging

from .app import create_app_from_config


__version__ = "0.1.0"


@click.group(name="tofulicious")
@click.version_option(__version__, prog_name="tofulicious")
def main() -> None:
    """tofulicious - remote state backend with advisory locking for Terraform/OpenTofu."""


@main.command(name="serve")
@click.option("--host", default=None, help="Listen address (env TOFU_HOST, default localhost)")
@click.option("--port", type=int, default=None, help="Listen port (env TOFU_PORT, default 8080)")
@click.option("--storage", type=click.Choice(STORAGE_KINDS), default=None, help="Storage backend (env TOFU_STORAGE)")
@click.option("--data-dir", default=None, help="Directory for file storage (env TOFU_DATA_DIR)")
@click.option("--log-level", default=None, help="Log level (env TOFU_LOG_LEVEL, default INFO)")
def serve(
    host: Optional[str],
    port: Optional[int],
    storage: Optional[str],
    data_dir: Optional[str],
    log_level: Optional[str],
) -> None:
    """Run the HTTP backend server until interrupted."""
    try:
        config = BackendConfig.from_env()
        overrides = {
            "host": host,
            "port": port,
            "storage": storage,
            "data_dir": data_dir,
            "log_level": log_level,
        }
        config = replace(config, **{k: v for k, v in overrides.items() if v is not None})
    except (ValueError, RuntimeError) as e:
        raise click.UsageError(str(e)) from e

    logger = configure_logging(LoggingConfig(log_level=config.log_level, log_file=config.log_file))
    try:
        app = create_app_from_config(config)
    except ValueError as e:
        # e.g. a TOFU_FERNET_KEY that is not a valid Fernet key
        raise click.UsageError(f"Cannot start server: {e}") from e
    logger.info("Starting server %s:%d (storage=%s)", config.host, config.port, config.storage)
    app.run(host=config.host, port=config.port, threaded=True, use_reloader=False)
    logger.info("Stopping server %s:%d", config.host, config.port)


# `server` is accepted as an alias of `serve`
main.add_command(serve, name="server")


@main.command(name="lock-status")
@click.argument("name", default="default")
@click.option("--url", default=DEFAULT_BASE_URL, show_default=True, help="Backend base URL")
def lock_status(name: str, url: str) -> None:
    """Show who holds the lock on state NAME."""
    try:
        with StateBackendClient(url) as client:
            holder = client.lock_status(name)
    except StateBackendClientError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if holder is None:
        click.echo(f"State {name!r} is not locked.")
        return
    click.echo(f"State {name!r} is locked.")
    click.echo(f"  ID:        {holder.lock_id}")
    click.echo(f"  Who:       {holder.who}")
    click.echo(f"  Operation: {holder.operation}")
    click.echo(f"  Created:   {holder.created}")


@main.command(name="force-unlock")
@click.argument("name", default="default")
@click.option("--url", default=DEFAULT_BASE_URL, show_default=True, help="Backend base URL")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def force_unlock(name: str, url: str, yes: bool) -> None:
    """Remove the lock on state NAME regardless of its holder."""
    if not yes:
        click.confirm(f"Force-unlock state {name!r}? Its holder may still be writing", abort=True)
    try:
        with StateBackendClient(url) as client:
            released = client.force_unlock(name)
    except StateBackendClientError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if released is None:
        click.echo(f"State {name!r} was not locked.")
    else:
        click.echo(f"Released lock {released.lock_id} held by {released.who!r}.")


if __name__ == "__main__":
    main()
