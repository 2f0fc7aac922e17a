"""SOCKS session handler for the proxy server.

One handler instance runs per accepted connection, in its own thread. It ties
the per-session resources to the lifetime of ``handle()``:
- The server's connection counter is incremented on entry and decremented on
  every exit path
- One pooled buffer is borrowed for the handshake and reused for the
  client-to-destination copy
- A second pooled buffer is borrowed for the destination-to-client copy once
  the tunnel is established

Example:
    # The handler is automatically used by the SocksProxy server class
    server = SocksProxy(config)
    server.serve_forever()
"""

import socketserver
from typing import TYPE_CHECKING

from loguru import logger

from .handshake import Handshake
from .relay import relay

if TYPE_CHECKING:
    from .proxy_server import SocksProxy


class SocksHandler(socketserver.BaseRequestHandler):
    """Handle incoming SOCKS5 connections."""

    server: "SocksProxy"

    def handle(self) -> None:
        """Run the handshake and, if it succeeds, relay until either side closes."""
        peer = format_peer(self.client_address)
        server = self.server

        with server.counter.track(), server.buffer_pool.borrow() as buffer:
            logger.debug(f"{peer}: connection accepted")
            handshake = Handshake(
                self.request,
                buffer,
                server.config.credentials,
                server.config.timeout,
                peer=peer,
            )
            session = handshake.run()
            if session is None:
                logger.debug(f"{peer}: closed during handshake")
                return

            with server.buffer_pool.borrow() as downstream_buffer:
                result = relay(session.client, session.remote, buffer, downstream_buffer)

            logger.debug(
                f"{peer}: tunnel to {session.target} closed ({result.first_closed} side first, "
                f"{result.upstream} bytes up, {result.downstream} bytes down)"
            )


def format_peer(address) -> str:
    """Format a socket address tuple as host:port."""
    try:
        host, port = address[0], address[1]
    except (TypeError, IndexError):
        return str(address)
    if ":" in str(host):
        return f"[{host}]:{port}"
    return f"{host}:{port}"
