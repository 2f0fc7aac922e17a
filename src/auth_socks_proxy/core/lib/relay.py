"""Bi-directional byte relay for established tunnels.

Two threads copy data, one per direction, each through its own pooled buffer.
Whichever copy stops first (EOF, reset, or any socket error) tears down both
sockets with ``shutdown``, which wakes the other copy out of its blocking
``recv_into``. There is no half-close: an idle tunnel dies as soon as either
peer goes away.

``relay()`` only returns once both threads are done, so the caller can hand
the buffers back to the pool without a copy still writing into them.
"""

import contextlib
import queue
import socket
import threading
from dataclasses import dataclass

from loguru import logger


@dataclass(frozen=True)
class RelayResult:
    """Bytes copied by a finished relay.

    Attributes:
        upstream: Bytes copied from the client to the destination
        downstream: Bytes copied from the destination to the client
        first_closed: Direction that stopped first ("upstream" or "downstream")
    """

    upstream: int
    downstream: int
    first_closed: str


def copy_stream(source: socket.socket, destination: socket.socket, buffer: bytearray) -> int:
    """Copy from ``source`` to ``destination`` until either side fails.

    Returns:
        int: Number of bytes written to ``destination``
    """
    view = memoryview(buffer)
    total = 0
    try:
        while True:
            n = source.recv_into(view)
            if n == 0:
                break
            destination.sendall(view[:n])
            total += n
    except OSError as exc:
        logger.trace(f"copy stopped: {exc}")
    return total


def _teardown(*socks: socket.socket) -> None:
    for sock in socks:
        with contextlib.suppress(OSError):
            sock.shutdown(socket.SHUT_RDWR)


def relay(
    client: socket.socket,
    remote: socket.socket,
    upstream_buffer: bytearray,
    downstream_buffer: bytearray,
) -> RelayResult:
    """Relay data between ``client`` and ``remote`` until either side closes.

    Both sockets are closed when this function returns.

    Args:
        client: Client-side socket
        remote: Destination socket
        upstream_buffer: Buffer for the client to destination copy
        downstream_buffer: Buffer for the destination to client copy

    Returns:
        RelayResult: Byte counts for both directions
    """
    done: queue.Queue[tuple[str, int]] = queue.Queue()

    def run(direction: str, source: socket.socket, destination: socket.socket, buffer: bytearray) -> None:
        copied = 0
        try:
            copied = copy_stream(source, destination, buffer)
        finally:
            done.put((direction, copied))

    workers = [
        threading.Thread(
            target=run, args=("upstream", client, remote, upstream_buffer), name="relay-upstream", daemon=True
        ),
        threading.Thread(
            target=run, args=("downstream", remote, client, downstream_buffer), name="relay-downstream", daemon=True
        ),
    ]
    started: list[threading.Thread] = []
    counts: dict[str, int] = {}
    try:
        for worker in workers:
            worker.start()
            started.append(worker)

        first, copied = done.get()
        counts[first] = copied
        # First finisher tears down both directions
        _teardown(client, remote)
        second, copied = done.get()
        counts[second] = copied
    finally:
        # Buffers stay borrowed until every started copy has stopped
        _teardown(client, remote)
        for worker in started:
            worker.join()
        for sock in (client, remote):
            with contextlib.suppress(OSError):
                sock.close()

    return RelayResult(
        upstream=counts.get("upstream", 0),
        downstream=counts.get("downstream", 0),
        first_closed=first,
    )
