"""Static startup configuration for the proxy server.

The configuration is built once at process start (normally from the command
line) and shared read-only by every session:
- Listen address
- Expected username and password
- Relay buffer size
- Handshake and dial timeout
- Telemetry interval

Example:
    config = ProxyConfig.from_options("127.0.0.1:1080", "admin", "secret")
    server = SocksProxy(config)
"""

import hmac
from dataclasses import dataclass, field
from typing import Final

from auth_socks_proxy.core.exceptions import ConfigError

DEFAULT_LISTEN: Final = "127.0.0.1:1080"
DEFAULT_USERNAME: Final = "admin"
DEFAULT_PASSWORD: Final = "admin"
DEFAULT_BUFFER_SIZE: Final = 65536  # Bytes
DEFAULT_TIMEOUT: Final = 5.0  # Seconds
DEFAULT_STATUS_INTERVAL: Final = 10.0  # Seconds

# Largest single handshake field is a 255 byte name or method list
MIN_BUFFER_SIZE: Final = 256
MAX_PORT: Final = 65535
MAX_FIELD_LENGTH: Final = 255


@dataclass(frozen=True)
class Credentials:
    """Expected username and password.

    Attributes:
        username: Raw username bytes
        password: Raw password bytes
    """

    username: bytes
    password: bytes = field(repr=False)

    @classmethod
    def from_strings(cls, username: str, password: str) -> "Credentials":
        """Build credentials from text, validating the SOCKS5 length limits."""
        user_bytes = username.encode()
        pass_bytes = password.encode()
        if len(user_bytes) > MAX_FIELD_LENGTH:
            raise ConfigError(f"username longer than {MAX_FIELD_LENGTH} bytes")
        if len(pass_bytes) > MAX_FIELD_LENGTH:
            raise ConfigError(f"password longer than {MAX_FIELD_LENGTH} bytes")
        return cls(user_bytes, pass_bytes)

    def matches(self, username: bytes, password: bytes) -> bool:
        """Check a username/password pair for exact byte equality."""
        user_ok = hmac.compare_digest(self.username, bytes(username))
        pass_ok = hmac.compare_digest(self.password, bytes(password))
        return user_ok and pass_ok


@dataclass(frozen=True)
class ProxyConfig:
    """Server configuration.

    Attributes:
        host: Address to listen on ("" for all interfaces)
        port: Port to listen on (0 lets the OS pick one)
        credentials: Username/password every client must present
        buffer_size: Size in bytes of each pooled I/O buffer
        timeout: Seconds allowed for the whole handshake and for the dial
        status_interval: Seconds between telemetry log lines
    """

    host: str
    port: int
    credentials: Credentials
    buffer_size: int = DEFAULT_BUFFER_SIZE
    timeout: float = DEFAULT_TIMEOUT
    status_interval: float = DEFAULT_STATUS_INTERVAL

    def __post_init__(self) -> None:
        if not 0 <= self.port <= MAX_PORT:
            raise ConfigError(f"port out of range: {self.port}")
        if self.buffer_size < MIN_BUFFER_SIZE:
            raise ConfigError(f"buffer size must be at least {MIN_BUFFER_SIZE} bytes")
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive")
        if self.status_interval <= 0:
            raise ConfigError("status interval must be positive")

    @property
    def listen_address(self) -> str:
        """Listen address in host:port form."""
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    @classmethod
    def from_options(
        cls,
        listen: str,
        username: str,
        password: str,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
        status_interval: float = DEFAULT_STATUS_INTERVAL,
    ) -> "ProxyConfig":
        """Build a configuration from command line style values."""
        host, port = parse_listen_address(listen)
        return cls(
            host=host,
            port=port,
            credentials=Credentials.from_strings(username, password),
            buffer_size=buffer_size,
            timeout=timeout,
            status_interval=status_interval,
        )


def parse_listen_address(value: str) -> tuple[str, int]:
    """Split a ``host:port`` listen address.

    Accepts ``127.0.0.1:1080``, ``:1080`` (all interfaces) and ``[::1]:1080``.

    Args:
        value: Address to parse

    Returns:
        tuple[str, int]: Host and port

    Raises:
        ConfigError: If the address is malformed
    """
    host, sep, port_text = value.strip().rpartition(":")
    if not sep:
        raise ConfigError(f"missing port in listen address: {value!r}")

    if host.startswith("["):
        if not host.endswith("]"):
            raise ConfigError(f"unterminated IPv6 address: {value!r}")
        host = host[1:-1]
    elif ":" in host:
        raise ConfigError(f"IPv6 listen address must be bracketed: {value!r}")

    try:
        port = int(port_text)
    except ValueError:
        raise ConfigError(f"invalid port in listen address: {value!r}") from None
    if not 0 <= port <= MAX_PORT:
        raise ConfigError(f"port out of range: {port}")
    return host, port
