"""
Unit tests for the bi-directional relay and the status reporter.
"""

import socket
import threading

import pytest
from loguru import logger

from auth_socks_proxy.core.lib.proxy_stats import ConnectionCounter
from auth_socks_proxy.core.lib.relay import copy_stream, relay
from auth_socks_proxy.core.lib.telemetry import StatusReporter

from conftest import recv_exact, recv_until_closed, wait_for


class RelayHarness:
    """Client <-> [proxy client side | relay | proxy remote side] <-> remote."""

    def __init__(self, buffer_size: int = 64):
        self.proxy_client, self.client = socket.socketpair()
        self.proxy_remote, self.remote = socket.socketpair()
        for sock in (self.client, self.remote):
            sock.settimeout(5.0)
        self.result = None
        self._thread = threading.Thread(target=self._run, args=(buffer_size,), daemon=True)

    def _run(self, buffer_size: int):
        self.result = relay(self.proxy_client, self.proxy_remote, bytearray(buffer_size), bytearray(buffer_size))

    def start(self):
        self._thread.start()
        return self

    def join(self, timeout: float = 5.0) -> bool:
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def close(self):
        for sock in (self.client, self.remote, self.proxy_client, self.proxy_remote):
            sock.close()


@pytest.fixture
def harness():
    h = RelayHarness().start()
    yield h
    h.close()


class TestCopyStream:
    """Tests for copy_stream."""

    def test_copies_until_eof(self):
        src_in, src = socket.socketpair()
        dst, dst_out = socket.socketpair()
        src_in.sendall(b"x" * 1000)
        src_in.shutdown(socket.SHUT_WR)

        assert copy_stream(src, dst, bytearray(100)) == 1000
        assert recv_exact(dst_out, 1000) == b"x" * 1000

        for sock in (src_in, src, dst, dst_out):
            sock.close()

    def test_stops_on_write_error(self):
        src_in, src = socket.socketpair()
        dst, dst_out = socket.socketpair()
        dst_out.close()
        dst.shutdown(socket.SHUT_WR)
        src_in.sendall(b"data")

        assert copy_stream(src, dst, bytearray(16)) == 0

        for sock in (src_in, src, dst):
            sock.close()


class TestRelay:
    """Tests for relay."""

    def test_bytes_pass_unmodified_in_both_directions(self, harness):
        harness.client.sendall(b"hello remote")
        assert recv_exact(harness.remote, 12) == b"hello remote"

        harness.remote.sendall(b"hello client")
        assert recv_exact(harness.client, 12) == b"hello client"

    def test_payload_larger_than_buffer_keeps_order(self, harness):
        payload = bytes(range(256)) * 40
        harness.client.sendall(payload)
        assert recv_exact(harness.remote, len(payload)) == payload

        harness.remote.sendall(payload[::-1])
        assert recv_exact(harness.client, len(payload)) == payload[::-1]

    def test_remote_close_terminates_both_directions(self, harness):
        harness.client.sendall(b"ping")
        assert recv_exact(harness.remote, 4) == b"ping"

        harness.remote.close()

        assert harness.join()
        assert recv_until_closed(harness.client) == b""
        assert harness.result.first_closed == "downstream"
        assert harness.result.upstream == 4

    def test_client_close_terminates_both_directions(self, harness):
        harness.remote.sendall(b"pong!")
        assert recv_exact(harness.client, 5) == b"pong!"

        harness.client.close()

        assert harness.join()
        assert recv_until_closed(harness.remote) == b""
        assert harness.result.first_closed == "upstream"
        assert harness.result.downstream == 5

    def test_half_close_tears_down_everything(self, harness):
        # No graceful half-close: shutting one write side ends the tunnel
        harness.client.shutdown(socket.SHUT_WR)

        assert harness.join()
        assert recv_until_closed(harness.remote) == b""

    def test_sockets_closed_on_return(self, harness):
        harness.remote.close()
        assert harness.join()

        assert harness.proxy_client.fileno() == -1
        assert harness.proxy_remote.fileno() == -1


class TestRelayStartFailure:
    """Tests for a relay whose second copy thread cannot start."""

    def test_started_copy_is_stopped_before_raising(self, monkeypatch):
        started = []

        class LimitedThread(threading.Thread):
            def start(self):
                if self.name == "relay-downstream":
                    raise RuntimeError("can't start new thread")
                started.append(self)
                super().start()

        monkeypatch.setattr(threading, "Thread", LimitedThread)
        proxy_client, client = socket.socketpair()
        proxy_remote, remote = socket.socketpair()
        client.settimeout(5.0)
        remote.settimeout(5.0)

        with pytest.raises(RuntimeError):
            relay(proxy_client, proxy_remote, bytearray(64), bytearray(64))

        assert [t.name for t in started] == ["relay-upstream"]
        assert not started[0].is_alive()
        assert proxy_client.fileno() == -1
        assert proxy_remote.fileno() == -1
        assert recv_until_closed(remote) == b""

        client.close()
        remote.close()


class TestStatusReporter:
    """Tests for StatusReporter."""

    def test_logs_active_connection_count(self):
        messages = []
        handler_id = logger.add(messages.append, format="{message}", level="INFO")
        counter = ConnectionCounter()
        counter.connection_started()
        counter.connection_started()
        reporter = StatusReporter(counter, interval=0.05)

        try:
            reporter.start()
            assert wait_for(lambda: any("status: 2 active connections" in m for m in messages))
        finally:
            reporter.stop()
            reporter.join(timeout=2.0)
            logger.remove(handler_id)

        assert not reporter.is_alive()

    def test_stop_before_first_interval(self):
        reporter = StatusReporter(ConnectionCounter(), interval=60.0)
        reporter.start()
        reporter.stop()
        reporter.join(timeout=2.0)

        assert not reporter.is_alive()
