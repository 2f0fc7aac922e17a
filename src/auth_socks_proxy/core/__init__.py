"""Core proxy server implementation.

This package contains the core components of the SOCKS proxy server:
- Handshake state machine (SOCKS5 with username/password authentication)
- Bi-directional relay
- Buffer pool and connection accounting
- Thread-per-connection server
- Configuration and exception handling

The core package provides all the protocol functionality, while keeping the
implementation details separate from the command-line interface.
"""
