"""SOCKS proxy server implementation with thread-per-connection sessions.

This module implements the listening side of the proxy:
- Accept loop that hands each connection to its own thread
- Shared per-server resources (buffer pool, connection counter, credentials)
- Non-fatal accept errors, logged and skipped
- Fatal bind errors at startup
- Periodic status reporting
- Clean shutdown handling

Example:
    # Listen on 127.0.0.1:1080 until interrupted
    run_server(ProxyConfig.from_options("127.0.0.1:1080", "admin", "secret"))
"""

import contextlib
import socket
import socketserver
import sys

from loguru import logger
from rich.console import Console

from auth_socks_proxy.core.config import ProxyConfig

from .buffer_pool import BufferPool
from .proxy_stats import ConnectionCounter
from .socks_handler import SocksHandler, format_peer
from .telemetry import StatusReporter

console = Console()


class SocksProxy(socketserver.ThreadingMixIn, socketserver.TCPServer):
    """SOCKS proxy server implementation."""

    allow_reuse_address = True
    daemon_threads = True
    request_queue_size = 100

    def __init__(self, config: ProxyConfig, handler_class: type[socketserver.BaseRequestHandler] = SocksHandler) -> None:
        """Bind and listen.

        Args:
            config: Server configuration
            handler_class: Per-connection handler

        Raises:
            OSError: If the listening socket cannot be bound
        """
        self.config = config
        self.counter = ConnectionCounter()
        self.buffer_pool = BufferPool(config.buffer_size)
        if ":" in config.host:
            self.address_family = socket.AF_INET6
        super().__init__((config.host, config.port), handler_class)

    def get_request(self) -> tuple[socket.socket, tuple]:
        """Accept a connection, logging accept failures before the loop skips them."""
        try:
            return super().get_request()
        except OSError as exc:
            logger.warning(f"Accept failed: {exc}")
            raise

    def handle_error(self, request, client_address) -> None:
        """Log unexpected handler exceptions instead of printing them."""
        logger.opt(exception=True).error(f"{format_peer(client_address)}: unhandled error in session")


def run_server(config: ProxyConfig) -> None:
    """Serve until interrupted.

    A bind failure ends the process with exit status 1.

    Args:
        config: Server configuration
    """
    try:
        server = SocksProxy(config)
    except OSError as e:
        logger.critical(f"Cannot listen on {config.listen_address}: {e}")
        console.print(f"[red]Error: cannot listen on {config.listen_address}: {e}")
        sys.exit(1)

    host, port = server.server_address[:2]
    logger.info(f"listening on {format_peer((host, port))}")
    logger.debug(f"buffer size {config.buffer_size} bytes, handshake timeout {config.timeout}s")
    console.print(f"[bold green]SOCKS5 proxy listening on {format_peer((host, port))}")

    reporter = StatusReporter(server.counter, config.status_interval)
    reporter.start()
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
        console.print("\n[yellow]Shutting down proxy server...")
    finally:
        reporter.stop()
        with contextlib.suppress(Exception):
            server.server_close()
            logger.info("Server closed")
