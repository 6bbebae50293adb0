"""
Shared fixtures for discovery tests.

Everything runs over loopback: responders bind 127.0.0.1 on a free port,
seekers "broadcast" straight to 127.0.0.1 from an ephemeral port.
"""

import socket
import time
from asyncio.selector_events import BaseSelectorEventLoop

import pytest

from udpdiscovery.discovery import DiscoverySeeker, LocalAddressSet

LOOPBACK = '127.0.0.1'

# Short interval so tests stay fast
INTERVAL = 0.05


def foreign_loopback() -> LocalAddressSet:
    """Local addresses that do not include loopback, so 127.0.0.1 counts as another machine."""
    return LocalAddressSet.of(['192.0.2.1'])


def loopback_is_self() -> LocalAddressSet:
    return LocalAddressSet.of([LOOPBACK, '::1'])


def wait_until(predicate, timeout: float = 2.0, step: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(step)
    return predicate()


@pytest.fixture
def free_port() -> int:
    """A UDP port nobody is bound to on loopback."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind((LOOPBACK, 0))
        return sock.getsockname()[1]


@pytest.fixture
def make_seeker(free_port):
    """Build loopback seekers aimed at free_port; stops them afterwards."""
    seekers = []

    def factory(**kwargs) -> DiscoverySeeker:
        options = dict(
            port=free_port,
            broadcast_interval=INTERVAL,
            broadcast_address=LOOPBACK,
            bind_host=LOOPBACK,
            bind_port=0,
            address_provider=foreign_loopback,
            stop_timeout=2.0,
        )
        options.update(kwargs)
        seeker = DiscoverySeeker(**options)
        seekers.append(seeker)
        return seeker

    yield factory

    for seeker in seekers:
        seeker.stop()


@pytest.fixture
def listener(free_port):
    """Plain socket on free_port standing in for a silent host."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind((LOOPBACK, free_port))
    sock.settimeout(0.5)
    yield sock
    sock.close()


@pytest.fixture
def failing_socket_call(monkeypatch):
    """
    Make an event-loop socket call raise.

    failing_socket_call('sock_recvfrom', OSError(...), times=1) fails the
    next receive only; times=None fails every call. Each attempt is
    timestamped into the returned list.
    """
    def install(name: str, error: Exception, times=None) -> list:
        original = getattr(BaseSelectorEventLoop, name)
        calls = []

        async def failing(self, *args):
            calls.append(time.monotonic())
            if times is None or len(calls) <= times:
                raise error
            return await original(self, *args)

        monkeypatch.setattr(BaseSelectorEventLoop, name, failing)
        return calls

    return install
