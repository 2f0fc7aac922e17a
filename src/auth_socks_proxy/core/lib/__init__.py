"""Core proxy library components."""

from .buffer_pool import BufferPool
from .handshake import Handshake, HandshakeState, Session, TargetAddress
from .proxy_server import SocksProxy, run_server
from .proxy_stats import ConnectionCounter
from .relay import RelayResult, relay
from .socks_handler import SocksHandler
from .telemetry import StatusReporter

__all__ = [
    "BufferPool",
    "ConnectionCounter",
    "Handshake",
    "HandshakeState",
    "relay",
    "RelayResult",
    "run_server",
    "Session",
    "SocksHandler",
    "SocksProxy",
    "StatusReporter",
    "TargetAddress",
]
