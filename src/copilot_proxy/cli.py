"""Typer CLI: run the proxy and manage its configuration file."""

from __future__ import annotations

import logging
from typing import Optional

import typer
import uvicorn

from . import __version__
from .chat_proxy.app import create_app
from .chat_proxy.config_loader import (
    env_source,
    load_file_config,
    load_proxy_config,
    update_config_file,
)
from .logging_utils import configure_logging

CONFIG_KEYS = ("api_key", "base_url", "host", "port")
MASK = "********"

app = typer.Typer(
    help="Local model-server facade that forwards chat to Z.AI GLM models."
)
config_app = typer.Typer(help="Manage configuration settings.")
app.add_typer(config_app, name="config")


def _mask(key: str, value: str) -> str:
    if key == "api_key" and value:
        return MASK
    return value


def _display(raw: object) -> str:
    return "" if raw in (None, "") else str(raw)


def _check_key(key: str) -> None:
    if key not in CONFIG_KEYS:
        typer.echo(
            f"Invalid key: {key}. Valid keys are: {', '.join(CONFIG_KEYS)}", err=True
        )
        raise typer.Exit(code=1)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Copilot Proxy listens where a local model server would and relays chat upstream."""


@app.command("serve")
def cmd_serve(
    host: Optional[str] = typer.Option(
        None, "--host", "-H", help="Host to bind the server to."
    ),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to listen on."),
    debug: bool = typer.Option(
        False, "--debug", "-d", help="Enable debug logging."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Also log to the terminal."
    ),
) -> None:
    """Start the proxy server."""
    cfg = load_proxy_config()
    if not cfg.api_key:
        typer.echo(
            "API key is not configured. Run 'copilot-proxy config set api_key "
            "YOUR_API_KEY' or set the ZAI_API_KEY environment variable.",
            err=True,
        )
        raise typer.Exit(code=1)

    if host:
        cfg.host = host
    if port is not None:
        cfg.port = port
    cfg.debug = cfg.debug or debug
    cfg.verbose = cfg.verbose or verbose

    # Debug runs mirror the log file on stdout.
    log_path = configure_logging(
        level=logging.DEBUG if cfg.debug else logging.INFO,
        include_console=cfg.verbose or cfg.debug,
    )
    logger = logging.getLogger(__name__)
    logger.info("Starting server on %s:%d (logs: %s)", cfg.host, cfg.port, log_path)
    logger.info("Base URL: %s", cfg.base_url)

    uvicorn.run(
        create_app(cfg),
        host=cfg.host,
        port=cfg.port,
        log_config=None,
        access_log=cfg.debug,
    )


@config_app.command("set")
def cmd_config_set(key: str, value: str) -> None:
    """Set a configuration value (api_key, base_url, host, port)."""
    _check_key(key)
    update: dict[str, object] = {key: value}
    if key == "port":
        try:
            update[key] = int(value)
        except ValueError:
            typer.echo(f"Invalid port value: {value}. Must be an integer.", err=True)
            raise typer.Exit(code=1)
    cfg = update_config_file(update)
    typer.echo(
        f"Configuration updated: {key} = {_mask(key, value)} ({cfg.config_file_path})"
    )


@config_app.command("get")
def cmd_config_get(key: str) -> None:
    """Print a configuration value; the API key is masked.

    When an environment variable overrides the file, both values are shown.
    """
    _check_key(key)
    value = _display(getattr(load_proxy_config(), key))
    if not value:
        typer.echo(f"{key} is not set")
        return
    source = env_source(key)
    if source is None:
        typer.echo(f"{key} = {_mask(key, value)}")
        return
    file_value = _mask(key, _display(load_file_config().get(key))) or "not set"
    typer.echo(
        f"{key} = {_mask(key, value)} (from {source}; config file: {file_value})"
    )


def main() -> None:  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
