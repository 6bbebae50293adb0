"""Tests for the discovery seeker (client role)."""

import asyncio
import errno
import logging
import socket
import threading
import time

import pytest

from udpdiscovery.discovery import (
    DISCOVERY_REQUEST,
    AsyncioDispatcher,
    DiscoveryBindError,
    DiscoveryCancelled,
    DiscoveryResponder,
    LocalAddressSet,
    QueueDispatcher,
    SessionState,
)

from tests.conftest import INTERVAL, LOOPBACK, loopback_is_self, wait_until


@pytest.fixture
def responder(free_port):
    responder = DiscoveryResponder(port=free_port, bind_host=LOOPBACK, autostart=True)
    yield responder
    responder.stop()


class TestDiscovery:
    """Seeker against a real responder."""

    def test_finds_responder(self, responder, make_seeker):
        seeker = make_seeker()
        found = []

        started = time.monotonic()
        assert seeker.start(on_found=found.append)
        address = seeker.wait(timeout=2.0)
        elapsed = time.monotonic() - started

        assert address == LOOPBACK
        assert found == [LOOPBACK]
        assert seeker.host_address == LOOPBACK
        assert seeker.host_endpoint.port == responder.bound_endpoint.port
        assert seeker.state is SessionState.IDLE

        # Found within a handful of broadcasts, not by luck after many
        assert wait_until(lambda: responder.requests_served >= 1)
        assert responder.requests_served <= 5
        assert elapsed < INTERVAL * 5 + 1.0

    def test_callbacks_run_exactly_once(self, responder, make_seeker):
        dispatcher = QueueDispatcher()
        seeker = make_seeker(dispatcher=dispatcher)
        registered, per_session = [], []
        seeker.on_host_found(registered.append)

        seeker.start(on_found=per_session.append)
        seeker.wait(timeout=2.0)

        # The queued completion is still there; draining it must not notify again
        wait_until(lambda: dispatcher.pending > 0, timeout=0.5)
        dispatcher.process_pending()
        dispatcher.process_pending()

        assert registered == [LOOPBACK]
        assert per_session == [LOOPBACK]

    def test_callback_runs_on_caller_thread(self, responder, make_seeker):
        dispatcher = QueueDispatcher()
        seeker = make_seeker(dispatcher=dispatcher)
        threads = []

        seeker.start(on_found=lambda address: threads.append(threading.current_thread()))

        # Nothing runs until the caller drains its queue
        assert wait_until(lambda: dispatcher.pending > 0)
        assert threads == []
        dispatcher.process_pending()

        assert threads == [threading.current_thread()]
        assert not seeker.is_running

    def test_callback_error_is_logged(self, responder, make_seeker, caplog):
        seeker = make_seeker()
        later = []

        def broken(address):
            raise RuntimeError("boom")

        seeker.on_host_found(broken)
        seeker.on_host_found(later.append)

        with caplog.at_level(logging.ERROR):
            seeker.start()
            seeker.wait(timeout=2.0)

        assert later == [LOOPBACK]
        assert "boom" in caplog.text

    def test_can_seek_again_after_success(self, responder, make_seeker):
        seeker = make_seeker()
        found = []

        seeker.start(on_found=found.append)
        seeker.wait(timeout=2.0)
        assert seeker.start(on_found=found.append)
        seeker.wait(timeout=2.0)

        assert found == [LOOPBACK, LOOPBACK]


class TestSelfFilter:
    """Replies from our own addresses are not a host."""

    def test_ignores_replies_from_own_address(self, responder, make_seeker):
        seeker = make_seeker(address_provider=loopback_is_self)
        found = []

        seeker.start(on_found=found.append)

        # The responder keeps answering; every answer comes from 127.0.0.1
        assert wait_until(lambda: responder.requests_served >= 4)
        seeker.dispatcher.process_pending()

        assert found == []
        assert seeker.is_running
        assert LOOPBACK in seeker.local_addresses

    def test_echo_does_not_trigger_early_broadcast(self, responder, make_seeker):
        seeker = make_seeker(address_provider=loopback_is_self, broadcast_interval=0.2)

        seeker.start()
        time.sleep(0.5)

        # One broadcast per interval at most, even though each is answered at once
        assert 1 <= responder.requests_served <= 4

    def test_empty_address_set_is_logged(self, responder, make_seeker, caplog):
        seeker = make_seeker(address_provider=LocalAddressSet)

        with caplog.at_level(logging.WARNING):
            seeker.start()
            seeker.wait(timeout=2.0)

        assert "No local addresses" in caplog.text

    def test_addresses_refreshed_each_session(self, responder, make_seeker):
        calls = []

        def provider():
            calls.append(1)
            return LocalAddressSet.of(['192.0.2.1'])

        seeker = make_seeker(address_provider=provider)
        seeker.start()
        seeker.wait(timeout=2.0)
        seeker.start()
        seeker.wait(timeout=2.0)

        assert len(calls) == 2


class TestRetry:
    """Seeker with nobody answering."""

    def test_keeps_broadcasting(self, listener, make_seeker):
        interval = 0.1
        seeker = make_seeker(broadcast_interval=interval)
        arrivals = []

        seeker.start()
        deadline = time.monotonic() + interval * 5
        while time.monotonic() < deadline:
            try:
                data, _ = listener.recvfrom(4096)
            except socket.timeout:
                break
            assert data == DISCOVERY_REQUEST
            arrivals.append(time.monotonic())

        assert len(arrivals) >= 4
        gaps = [b - a for a, b in zip(arrivals, arrivals[1:])]
        # Allow for timer granularity on the receiving side
        assert all(gap >= interval * 0.8 for gap in gaps)
        assert seeker.is_running
        assert seeker.host_address is None

    def test_jitter_stretches_interval(self, listener, make_seeker):
        seeker = make_seeker(broadcast_interval=0.05, jitter=0.1)
        arrivals = []

        seeker.start()
        for _ in range(4):
            listener.recvfrom(4096)
            arrivals.append(time.monotonic())

        gaps = [b - a for a, b in zip(arrivals, arrivals[1:])]
        assert all(gap >= 0.04 for gap in gaps)

    def test_wait_timeout_leaves_seek_running(self, listener, make_seeker):
        seeker = make_seeker()
        seeker.start()

        with pytest.raises(TimeoutError):
            seeker.wait(timeout=0.1)

        assert seeker.is_running



class TestSocketFailures:
    """The network misbehaving under a running seeker."""

    def test_failed_receive_ends_session(self, listener, make_seeker, failing_socket_call, caplog):
        failing_socket_call('sock_recvfrom', OSError(errno.ENETDOWN, "Network is down"))
        seeker = make_seeker()
        found = []

        with caplog.at_level(logging.ERROR):
            seeker.start(on_found=found.append)
            with pytest.raises(OSError) as excinfo:
                seeker.wait(timeout=2.0)

        assert excinfo.value.errno == errno.ENETDOWN
        assert seeker.state is SessionState.IDLE
        assert not seeker.is_running
        assert found == []
        assert "ended without a host" in caplog.text

        # Nothing left half-running: the seeker can be started again
        assert seeker.start()

    def test_failed_send_keeps_retrying_at_interval(self, make_seeker, failing_socket_call, caplog):
        interval = 0.1
        calls = failing_socket_call('sock_sendto', OSError(errno.ENETUNREACH, "Network is unreachable"))
        seeker = make_seeker(broadcast_interval=interval)

        with caplog.at_level(logging.WARNING):
            seeker.start()
            assert wait_until(lambda: len(calls) >= 4)

        gaps = [b - a for a, b in zip(calls, calls[1:4])]
        assert all(gap >= interval * 0.8 for gap in gaps)
        assert seeker.is_running
        assert seeker.host_address is None
        assert "failed" in caplog.text


class TestLifecycle:
    """Start/stop behaviour."""

    def test_second_start_is_ignored(self, listener, make_seeker, caplog):
        seeker = make_seeker()

        assert seeker.start()
        with caplog.at_level(logging.WARNING):
            assert not seeker.start()

        assert "ignoring start request" in caplog.text
        assert seeker.is_running

    def test_stop_cancels_wait(self, listener, make_seeker):
        seeker = make_seeker()
        found = []
        seeker.start(on_found=found.append)

        stopper = threading.Timer(0.1, seeker.stop)
        stopper.start()
        with pytest.raises(DiscoveryCancelled):
            seeker.wait(timeout=2.0)
        stopper.join()

        seeker.dispatcher.process_pending()
        assert found == []
        assert seeker.state is SessionState.IDLE

    def test_stop_releases_socket(self, listener, make_seeker):
        seeker = make_seeker()
        seeker.start()
        bound = seeker.local_endpoint

        seeker.stop()

        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.bind((bound.host, bound.port))

    def test_stop_when_idle_is_noop(self, make_seeker):
        seeker = make_seeker()
        seeker.stop()
        assert seeker.state is SessionState.IDLE

    def test_context_manager_stops(self, listener, make_seeker):
        with make_seeker() as seeker:
            seeker.start()
            assert seeker.is_running
        assert not seeker.is_running

    def test_wait_before_start(self, make_seeker):
        with pytest.raises(RuntimeError):
            make_seeker().wait(timeout=0.1)

    def test_bind_failure_is_raised_synchronously(self, free_port, make_seeker):
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as taken:
            taken.bind((LOOPBACK, free_port))
            seeker = make_seeker(bind_port=free_port)

            with pytest.raises(DiscoveryBindError) as excinfo:
                seeker.start()

        assert excinfo.value.port == free_port
        assert seeker.state is SessionState.IDLE

    @pytest.mark.parametrize("kwargs", [
        {"port": 0},
        {"port": 70000},
        {"broadcast_interval": 0},
        {"broadcast_interval": -1.0},
        {"jitter": -0.5},
        {"jitter": float("nan")},
        {"jitter": float("inf")},
        {"jitter": "soon"},
    ])
    def test_invalid_settings(self, make_seeker, kwargs):
        with pytest.raises(ValueError):
            make_seeker(**kwargs)

    def test_start_overrides(self, listener, make_seeker, free_port):
        seeker = make_seeker(port=1234, broadcast_interval=10.0)

        seeker.start(port=free_port, broadcast_interval=INTERVAL)
        data, _ = listener.recvfrom(4096)

        assert data == DISCOVERY_REQUEST
        assert seeker.port == free_port
        assert seeker.broadcast_interval == INTERVAL


class TestAsyncCallers:
    """Seeker started from a coroutine."""

    @pytest.mark.asyncio
    async def test_wait_async_and_loop_callback(self, responder, make_seeker):
        seeker = make_seeker()
        found = asyncio.Event()
        threads = []

        def on_found(address):
            threads.append(threading.current_thread())
            found.set()

        seeker.start(on_found=on_found)
        assert isinstance(seeker.dispatcher, AsyncioDispatcher)

        address = await asyncio.wait_for(seeker.wait_async(), 2.0)
        await asyncio.wait_for(found.wait(), 2.0)

        assert address == LOOPBACK
        assert threads == [threading.current_thread()]

    @pytest.mark.asyncio
    async def test_wait_async_cancelled_by_stop(self, listener, make_seeker):
        seeker = make_seeker()
        seeker.start()

        loop = asyncio.get_running_loop()
        loop.call_later(0.1, seeker.stop)

        with pytest.raises(DiscoveryCancelled):
            await asyncio.wait_for(seeker.wait_async(), 2.0)

    @pytest.mark.asyncio
    async def test_cancelling_waiter_keeps_seeking(self, listener, make_seeker):
        seeker = make_seeker()
        seeker.start()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(seeker.wait_async(), 0.1)

        assert seeker.is_running
