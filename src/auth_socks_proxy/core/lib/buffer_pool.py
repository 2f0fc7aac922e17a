"""Pool of reusable fixed-size I/O buffers.

Every session borrows one buffer for its handshake (reused afterwards for the
client-to-destination copy) and a second one for the destination-to-client
copy. Buffers go back to the pool when the session finishes, whatever the
outcome, so a busy server recycles the same few allocations instead of
creating two new buffers per connection.

The pool is thread-safe: any number of session threads may acquire and
release concurrently, and a buffer is never handed to two borrowers at once.

Example:
    pool = BufferPool(65536)
    with pool.borrow() as buf:
        n = sock.recv_into(buf)
"""

import threading
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager

from auth_socks_proxy.core.exceptions import BufferPoolError


class BufferPool:
    """Thread-safe pool of ``bytearray`` buffers of one size."""

    def __init__(self, buffer_size: int) -> None:
        """Initialize an empty pool.

        Args:
            buffer_size: Length in bytes of every buffer handed out
        """
        if buffer_size <= 0:
            raise ValueError("buffer size must be positive")
        self.buffer_size = buffer_size
        self._free: deque[bytearray] = deque()
        self._borrowed: set[int] = set()
        self._allocated = 0
        self._lock = threading.Lock()

    def acquire(self) -> bytearray:
        """Take a buffer, allocating a new one when none is free."""
        with self._lock:
            if self._free:
                buffer = self._free.pop()
            else:
                buffer = bytearray(self.buffer_size)
                self._allocated += 1
            self._borrowed.add(id(buffer))
            return buffer

    def release(self, buffer: bytearray) -> None:
        """Return a borrowed buffer to the pool.

        Raises:
            BufferPoolError: If the buffer is not currently borrowed from this pool
        """
        with self._lock:
            try:
                self._borrowed.remove(id(buffer))
            except KeyError:
                raise BufferPoolError("buffer was not borrowed from this pool") from None
            self._free.append(buffer)

    @contextmanager
    def borrow(self) -> Iterator[bytearray]:
        """Borrow a buffer for the duration of a ``with`` block."""
        buffer = self.acquire()
        try:
            yield buffer
        finally:
            self.release(buffer)

    @property
    def in_use(self) -> int:
        """Number of buffers currently borrowed."""
        with self._lock:
            return len(self._borrowed)

    @property
    def available(self) -> int:
        """Number of idle buffers ready for reuse."""
        with self._lock:
            return len(self._free)

    @property
    def allocated(self) -> int:
        """Total number of buffers ever created by this pool."""
        with self._lock:
            return self._allocated
