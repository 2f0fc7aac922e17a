"""Main entry point for the SOCKS proxy server functionality.

This module exposes only the components needed to start a server, hiding the
handshake, relay and resource management behind ``run_server``.

Example:
    from auth_socks_proxy.core.proxy import ProxyConfig, run_server

    run_server(ProxyConfig.from_options("127.0.0.1:1080", "admin", "secret"))

Attributes:
    __all__ (list): List of public components exposed by this module
"""

from .config import ProxyConfig
from .lib import SocksProxy, run_server

__all__ = ["ProxyConfig", "run_server", "SocksProxy"]
