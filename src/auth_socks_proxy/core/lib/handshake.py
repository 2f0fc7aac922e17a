"""SOCKS5 handshake state machine.

This module drives one client connection from its first byte to an established
tunnel, following the subset of RFC 1928 / RFC 1929 the proxy speaks:
- Greeting: the offered methods are read and ignored, username/password is forced
- Authentication: exact match against the configured credentials
- Request: CONNECT only, IPv4 / domain name / IPv6 destinations
- Dial: one outbound TCP connection attempt, no retry

Every state is a transition method that reads exactly the bytes it needs into
the session's pooled buffer and returns the next state. The whole exchange,
dial included, runs under a single absolute deadline.

Wire behaviour on errors:
- Truncated or failed read, deadline exceeded: close, no reply
- Wrong credentials: ``01 01`` then close
- Command other than CONNECT: close, no reply
- Unknown address type or failed dial: general failure reply then close

Example:
    with pool.borrow() as buf:
        session = Handshake(conn, buf, credentials, timeout=5.0).run()
        if session is not None:
            relay(session.client, session.remote, buf, other_buf)
"""

import contextlib
import socket
import struct
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, IntEnum, auto
from typing import Final

from loguru import logger

from auth_socks_proxy.core.config import Credentials
from auth_socks_proxy.core.exceptions import DialError, HandshakeError, ShortReadError

# SOCKS protocol constants
SOCKS_VERSION: Final = 5
AUTH_VERSION: Final = 1
METHOD_USERNAME_PASSWORD: Final = 2
CONNECT_CMD: Final = 1

# Response codes
RESP_SUCCESS: Final = 0
RESP_GENERAL_FAILURE: Final = 5
AUTH_SUCCESS: Final = 0
AUTH_FAILURE: Final = 1

# Bind address reported in replies
DEFAULT_BIND_ADDR: Final = "0.0.0.0"
DEFAULT_BIND_PORT: Final = 0


class AddressType(IntEnum):
    """Destination address encodings (ATYP)."""

    IPV4 = 0x01
    DOMAIN = 0x03
    IPV6 = 0x04


class HandshakeState(Enum):
    """States a session passes through before relaying."""

    GREETING = auto()
    AUTHENTICATION = auto()
    REQUEST = auto()
    DIAL = auto()
    ESTABLISHED = auto()
    CLOSED = auto()


TERMINAL_STATES: Final = frozenset({HandshakeState.ESTABLISHED, HandshakeState.CLOSED})

Dialer = Callable[[tuple[str, int], float], socket.socket]


def build_reply(status: int, bind_addr: str = DEFAULT_BIND_ADDR, bind_port: int = DEFAULT_BIND_PORT) -> bytes:
    """Build a SOCKS5 request reply with an IPv4 bind address."""
    response = struct.pack("!BBBB", SOCKS_VERSION, status, 0, AddressType.IPV4)
    return response + socket.inet_aton(bind_addr) + struct.pack("!H", bind_port)


METHOD_SELECTION: Final = bytes((SOCKS_VERSION, METHOD_USERNAME_PASSWORD))
AUTH_OK: Final = bytes((AUTH_VERSION, AUTH_SUCCESS))
AUTH_DENIED: Final = bytes((AUTH_VERSION, AUTH_FAILURE))
REPLY_SUCCESS: Final = build_reply(RESP_SUCCESS)
REPLY_FAILURE: Final = build_reply(RESP_GENERAL_FAILURE)


class Deadline:
    """Absolute point in time after which socket operations fail."""

    def __init__(self, seconds: float) -> None:
        self.expires_at = time.monotonic() + seconds

    def remaining(self) -> float:
        """Seconds left before the deadline.

        Raises:
            TimeoutError: If the deadline has already passed
        """
        left = self.expires_at - time.monotonic()
        if left <= 0:
            raise TimeoutError("handshake deadline exceeded")
        return left

    def apply(self, sock: socket.socket) -> None:
        """Limit the next blocking call on ``sock`` to the time remaining."""
        sock.settimeout(self.remaining())


def read_exact(
    sock: socket.socket, view: memoryview, count: int, deadline: Deadline | None = None
) -> memoryview:
    """Read exactly ``count`` bytes from ``sock`` into the start of ``view``.

    Args:
        sock: Socket to read from
        view: Writable buffer at least ``count`` bytes long
        count: Number of bytes required
        deadline: Optional deadline enforced before every receive

    Returns:
        memoryview: The filled ``view[:count]`` slice

    Raises:
        ShortReadError: If the peer closes before ``count`` bytes arrived
        OSError: On socket errors, including timeouts
    """
    received = 0
    while received < count:
        if deadline is not None:
            deadline.apply(sock)
        n = sock.recv_into(view[received:count], count - received)
        if n == 0:
            raise ShortReadError(count, received)
        received += n
    return view[:count]


@dataclass(frozen=True)
class TargetAddress:
    """Destination requested by the client.

    Attributes:
        host: Address or hostname, ``None`` if the request carried none usable
        port: Destination port
        address_type: Raw ATYP byte from the request
    """

    host: str | None
    port: int
    address_type: int

    def __str__(self) -> str:
        host = self.host if self.host is not None else "<unset>"
        if ":" in host:
            return f"[{host}]:{self.port}"
        return f"{host}:{self.port}"


@dataclass
class Session:
    """An established tunnel ready for relaying."""

    client: socket.socket
    remote: socket.socket
    target: TargetAddress


class Handshake:
    """Drive a single client through the SOCKS5 handshake.

    The instance is used once: ``run()`` either returns a ``Session`` with the
    deadline cleared on both sockets, or closes everything and returns ``None``.
    """

    def __init__(
        self,
        client: socket.socket,
        buffer: bytearray,
        credentials: Credentials,
        timeout: float,
        dial: Dialer = socket.create_connection,
        peer: str = "-",
    ) -> None:
        """Prepare a handshake.

        Args:
            client: Accepted client socket
            buffer: Pooled buffer used for every handshake read
            credentials: Expected username and password
            timeout: Seconds for the whole handshake, and for the dial itself
            dial: Function opening the outbound connection
            peer: Client address for log messages
        """
        self.client = client
        self.credentials = credentials
        self.timeout = timeout
        self.peer = peer
        self.state = HandshakeState.GREETING
        self.target: TargetAddress | None = None
        self.remote: socket.socket | None = None
        self._view = memoryview(buffer)
        self._dial = dial
        self._deadline: Deadline | None = None
        self._transitions: dict[HandshakeState, Callable[[], HandshakeState]] = {
            HandshakeState.GREETING: self._greeting,
            HandshakeState.AUTHENTICATION: self._authentication,
            HandshakeState.REQUEST: self._request,
            HandshakeState.DIAL: self._dial_target,
        }

    def run(self) -> Session | None:
        """Run the state machine to completion."""
        self._deadline = Deadline(self.timeout)
        try:
            while self.state not in TERMINAL_STATES:
                self.state = self._transitions[self.state]()
        except (HandshakeError, OSError) as exc:
            logger.debug(f"{self.peer}: handshake aborted during {self.state.name}: {exc}")
            self.state = HandshakeState.CLOSED

        if self.state is HandshakeState.CLOSED or self.remote is None or self.target is None:
            self._close()
            return None

        # Established: no more time limit on either transport
        self.client.settimeout(None)
        self.remote.settimeout(None)
        return Session(self.client, self.remote, self.target)

    def _read(self, count: int) -> memoryview:
        return read_exact(self.client, self._view, count, self._deadline)

    def _send(self, data: bytes) -> None:
        if self._deadline is not None:
            self._deadline.apply(self.client)
        self.client.sendall(data)

    def _greeting(self) -> HandshakeState:
        nmethods = self._read(2)[1]
        # Offered methods are ignored, username/password is always selected
        self._read(nmethods)
        self._send(METHOD_SELECTION)
        return HandshakeState.AUTHENTICATION

    def _authentication(self) -> HandshakeState:
        ulen = self._read(2)[1]
        username = bytes(self._read(ulen))
        plen = self._read(1)[0]
        password = bytes(self._read(plen))

        if not self.credentials.matches(username, password):
            logger.debug(f"{self.peer}: authentication failed for user {username!r}")
            self._send(AUTH_DENIED)
            return HandshakeState.CLOSED

        self._send(AUTH_OK)
        return HandshakeState.REQUEST

    def _request(self) -> HandshakeState:
        header = self._read(4)
        cmd, atyp = header[1], header[3]
        if cmd != CONNECT_CMD:
            logger.debug(f"{self.peer}: unsupported command {cmd:#04x}")
            return HandshakeState.CLOSED

        host = self._read_address(atyp)
        port = struct.unpack("!H", self._read(2))[0]
        self.target = TargetAddress(host, port, atyp)
        return HandshakeState.DIAL

    def _read_address(self, atyp: int) -> str | None:
        if atyp == AddressType.IPV4:
            return socket.inet_ntop(socket.AF_INET, bytes(self._read(4)))
        if atyp == AddressType.IPV6:
            return socket.inet_ntop(socket.AF_INET6, bytes(self._read(16)))
        if atyp == AddressType.DOMAIN:
            length = self._read(1)[0]
            raw = bytes(self._read(length))
            try:
                return raw.decode("ascii") or None
            except UnicodeDecodeError:
                logger.debug(f"{self.peer}: non-ASCII hostname {raw!r}")
                return None

        logger.debug(f"{self.peer}: unknown address type {atyp:#04x}")
        return None

    def _dial_target(self) -> HandshakeState:
        try:
            self.remote = self._connect()
        except DialError as exc:
            logger.debug(f"{self.peer}: dial to {self.target} failed: {exc}")
            self._send(REPLY_FAILURE)
            return HandshakeState.CLOSED

        logger.debug(f"{self.peer}: connected to {self.target}")
        self._send(REPLY_SUCCESS)
        return HandshakeState.ESTABLISHED

    def _connect(self) -> socket.socket:
        if self.target is None or self.target.host is None:
            raise DialError("no destination address")
        try:
            return self._dial((self.target.host, self.target.port), self.timeout)
        except (OSError, ValueError) as exc:
            # getaddrinfo rejects some ASCII names (empty or overlong labels) with UnicodeError
            raise DialError(str(exc)) from exc

    def _close(self) -> None:
        for sock in (self.client, self.remote):
            if sock is not None:
                with contextlib.suppress(OSError):
                    sock.close()
