"""Connection accounting for the SOCKS proxy server.

This module tracks how many sessions are currently inside their handler. The
server owns one ``ConnectionCounter`` and hands it to every session through the
server object; the telemetry reporter reads it periodically.

The counter is maintained in a thread-safe manner using a lock and is designed
to be updated from any number of session threads without race conditions.

Example:
    counter = ConnectionCounter()

    with counter.track():
        handle_session()

    assert counter.value == 0
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class ConnectionCounter:
    """Thread-safe counter of in-flight sessions.

    All operations are thread-safe using an internal lock. The value never
    drops below zero: an unmatched decrement raises ``RuntimeError``.
    """

    def __init__(self) -> None:
        """Initialize the counter at zero."""
        self._active = 0
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        """Current number of active sessions."""
        with self._lock:
            return self._active

    def connection_started(self) -> int:
        """Increment the active connection counter.

        Returns:
            int: The new value
        """
        with self._lock:
            self._active += 1
            return self._active

    def connection_ended(self) -> int:
        """Decrement the active connection counter.

        Returns:
            int: The new value

        Raises:
            RuntimeError: If no session is active
        """
        with self._lock:
            if self._active == 0:
                raise RuntimeError("connection counter would become negative")
            self._active -= 1
            return self._active

    @contextmanager
    def track(self) -> Iterator[int]:
        """Count a session for the duration of a ``with`` block."""
        current = self.connection_started()
        try:
            yield current
        finally:
            self.connection_ended()

    def __repr__(self) -> str:
        return f"ConnectionCounter(active={self.value})"
