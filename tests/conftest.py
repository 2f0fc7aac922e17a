"""
pytest configuration and fixtures.
"""

import socket
import struct
import threading
import time
from typing import Generator

import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from auth_socks_proxy.core.config import Credentials, ProxyConfig
from auth_socks_proxy.core.lib import SocksProxy


USERNAME = b"admin"
PASSWORD = b"admin"


def recv_exact(sock: socket.socket, count: int) -> bytes:
    """Read exactly ``count`` bytes or fail the test."""
    data = b""
    while len(data) < count:
        chunk = sock.recv(count - len(data))
        if not chunk:
            raise AssertionError(f"connection closed after {len(data)} of {count} bytes")
        data += chunk
    return data


def recv_until_closed(sock: socket.socket) -> bytes:
    """Read everything the peer sends until it closes."""
    data = b""
    while True:
        try:
            chunk = sock.recv(4096)
        except ConnectionResetError:
            return data
        if not chunk:
            return data
        data += chunk


def greeting() -> bytes:
    return b"\x05\x01\x00"


def auth_request(username: bytes = USERNAME, password: bytes = PASSWORD) -> bytes:
    return bytes([0x01, len(username)]) + username + bytes([len(password)]) + password


def connect_request(host: str, port: int, cmd: int = 0x01) -> bytes:
    """Build a request for an IPv4 address."""
    return bytes([0x05, cmd, 0x00, 0x01]) + socket.inet_aton(host) + struct.pack("!H", port)


def wait_for(predicate, timeout: float = 5.0) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class EchoServer:
    """TCP echo server running in background threads."""

    def __init__(self):
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(16)
        self.port = self._sock.getsockname()[1]
        self.connections: list[socket.socket] = []
        self._thread = threading.Thread(target=self._accept_loop, daemon=True)

    def start(self):
        self._thread.start()

    def _accept_loop(self):
        while True:
            try:
                conn, _ = self._sock.accept()
            except OSError:
                return
            self.connections.append(conn)
            threading.Thread(target=self._echo, args=(conn,), daemon=True).start()

    def _echo(self, conn: socket.socket):
        with conn:
            while True:
                try:
                    data = conn.recv(4096)
                except OSError:
                    return
                if not data:
                    return
                try:
                    conn.sendall(data)
                except OSError:
                    return

    def close_connections(self):
        for conn in self.connections:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass

    def stop(self):
        self._sock.close()
        self.close_connections()


class ProxyRunner:
    """Proxy server helper that runs in a background thread."""

    def __init__(self, server: SocksProxy):
        self.server = server
        self.host, self.port = server.server_address[:2]
        self._thread: threading.Thread = None

    def start(self):
        """Start server in background thread."""
        self._thread = threading.Thread(
            target=self.server.serve_forever,
            kwargs={"poll_interval": 0.05},
            daemon=True,
        )
        self._thread.start()

    def connect(self) -> socket.socket:
        sock = socket.create_connection((self.host, self.port), timeout=5.0)
        return sock

    def open_tunnel(self, target_port: int) -> socket.socket:
        """Authenticate and CONNECT to 127.0.0.1:target_port."""
        sock = self.connect()
        sock.sendall(greeting())
        assert recv_exact(sock, 2) == b"\x05\x02"
        sock.sendall(auth_request())
        assert recv_exact(sock, 2) == b"\x01\x00"
        sock.sendall(connect_request("127.0.0.1", target_port))
        assert recv_exact(sock, 10) == b"\x05\x00\x00\x01\x00\x00\x00\x00\x00\x00"
        return sock

    def stop(self):
        """Stop the server."""
        self.server.shutdown()
        self.server.server_close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)


@pytest.fixture
def credentials() -> Credentials:
    """Credentials every test client uses."""
    return Credentials(USERNAME, PASSWORD)


@pytest.fixture
def config(credentials: Credentials) -> ProxyConfig:
    """Default test server configuration."""
    return ProxyConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        credentials=credentials,
        buffer_size=1024,
        timeout=2.0,
        status_interval=60.0,
    )


@pytest.fixture
def echo_server() -> Generator[EchoServer, None, None]:
    """TCP echo server to tunnel to."""
    server = EchoServer()
    server.start()
    yield server
    server.stop()


@pytest.fixture
def proxy(config: ProxyConfig) -> Generator[ProxyRunner, None, None]:
    """Running proxy server."""
    test_proxy = ProxyRunner(SocksProxy(config))
    test_proxy.start()
    yield test_proxy
    test_proxy.stop()


@pytest.fixture
def closed_port() -> int:
    """A local port nothing listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
