"""Command-line interface for the SOCKS proxy server.

This module provides the main command-line interface for the proxy server, handling:
- Command-line argument parsing
- Logging setup
- Configuration validation
- Server startup
- Error reporting

The CLI is built using Typer. Credentials may also come from the
``SOCKS_PROXY_USERNAME`` and ``SOCKS_PROXY_PASSWORD`` environment variables so
they stay out of the process list.

Example:
    # Run from command line:
    $ auth-socks-proxy proxy --listen 0.0.0.0:1080 --username alice --password s3cret
"""

import typer
from loguru import logger
from rich.console import Console

from auth_socks_proxy import __version__
from auth_socks_proxy.core.config import (
    DEFAULT_BUFFER_SIZE,
    DEFAULT_LISTEN,
    DEFAULT_PASSWORD,
    DEFAULT_STATUS_INTERVAL,
    DEFAULT_TIMEOUT,
    DEFAULT_USERNAME,
    ProxyConfig,
)
from auth_socks_proxy.core.exceptions import ConfigError
from auth_socks_proxy.core.proxy import run_server
from auth_socks_proxy.core.utils.log_config import configure_logging

console = Console()
app = typer.Typer(help="SOCKS5 proxy with username/password authentication")


@app.callback(invoke_without_command=True)
def version_callback():
    """Show version information."""
    console.print(f"[cyan]Auth SOCKS Proxy v{__version__}[/cyan]")


@app.command(name="proxy")
def start_proxy(
    listen: str = typer.Option(DEFAULT_LISTEN, "--listen", "-l", help="Listen address (host:port)"),
    username: str = typer.Option(
        DEFAULT_USERNAME, "--username", "-u", envvar="SOCKS_PROXY_USERNAME", help="Required username"
    ),
    password: str = typer.Option(
        DEFAULT_PASSWORD, "--password", "-p", envvar="SOCKS_PROXY_PASSWORD", help="Required password"
    ),
    buffer_size: int = typer.Option(DEFAULT_BUFFER_SIZE, "--buffer-size", "-b", help="Buffer size in bytes"),
    timeout: float = typer.Option(DEFAULT_TIMEOUT, "--timeout", "-t", help="Handshake and dial timeout in seconds"),
    status_interval: float = typer.Option(
        DEFAULT_STATUS_INTERVAL, "--status-interval", help="Seconds between status log lines"
    ),
    debug: bool = typer.Option(
        default=False,
        help="Enable debug logging",
    ),
):
    """Start the SOCKS proxy server."""
    configure_logging(debug=debug)

    try:
        config = ProxyConfig.from_options(
            listen,
            username,
            password,
            buffer_size=buffer_size,
            timeout=timeout,
            status_interval=status_interval,
        )
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        raise typer.BadParameter(str(e)) from e

    logger.info("Starting SOCKS proxy server")
    run_server(config)


if __name__ == "__main__":
    app()
