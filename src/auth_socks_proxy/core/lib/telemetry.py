"""Periodic status reporting for the proxy server."""

import threading

from loguru import logger

from .proxy_stats import ConnectionCounter


class StatusReporter(threading.Thread):
    """Background thread logging the active connection count at a fixed interval."""

    def __init__(self, counter: ConnectionCounter, interval: float) -> None:
        """Initialize the reporter.

        Args:
            counter: Counter to read
            interval: Seconds between two log lines
        """
        super().__init__(name="status-reporter", daemon=True)
        self.counter = counter
        self.interval = interval
        self._stopped = threading.Event()

    def run(self) -> None:
        while not self._stopped.wait(self.interval):
            logger.info(f"status: {self.counter.value} active connections")

    def stop(self) -> None:
        """Ask the reporter to exit at its next wake-up."""
        self._stopped.set()
