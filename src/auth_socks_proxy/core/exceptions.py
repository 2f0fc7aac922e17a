"""Custom exceptions for the proxy server.

This module defines the exceptions used throughout the proxy server implementation.
They give more specific error handling for:
- Invalid startup configuration
- Buffer pool misuse
- Handshake failures (truncated fields, failed dials)

Handshake errors never leave a session: the state machine turns them into the
wire-level behaviour (a failure reply or a silent close) and a debug log line.

Example:
    try:
        config = ProxyConfig.from_options(listen, user, password)
    except ConfigError as e:
        console.print(f"[red]Invalid configuration: {e}")
"""


class ProxyError(Exception):
    """Base exception for proxy errors."""


class ConfigError(ProxyError, ValueError):
    """Raised when the startup configuration is invalid."""


class BufferPoolError(ProxyError):
    """Raised when a buffer is released that the pool did not lend out."""


class HandshakeError(ProxyError):
    """Raised when a SOCKS5 handshake cannot continue."""


class ShortReadError(HandshakeError):
    """Raised when the peer closes before a field was fully received."""

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(f"expected {expected} bytes, received {received}")
        self.expected = expected
        self.received = received


class DialError(HandshakeError):
    """Raised when the destination cannot be reached."""
