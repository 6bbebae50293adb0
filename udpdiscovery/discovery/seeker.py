"""
Discovery Seeker (client role)

Broadcasts "Discovery Message" on the discovery port every
broadcast_interval seconds until some machine other than this one
answers, then reports the sender's address exactly once.

The wait is open-ended on purpose: this is "block until the host shows
up", not a bounded scan. Use wait(timeout) or stop() to give up.
"""

import asyncio
import concurrent.futures
import logging
import random
import socket
import threading
from functools import partial
from typing import Callable, List, Optional

from .addresses import LocalAddressSet, local_addresses
from .dispatch import Dispatcher, QueueDispatcher, default_dispatcher
from .errors import DiscoveryCancelled
from .protocol import (
    BROADCAST_ADDRESS,
    DEFAULT_BROADCAST_INTERVAL,
    DEFAULT_PORT,
    DISCOVERY_REQUEST,
    MAX_DATAGRAM_SIZE,
    Endpoint,
    validate_interval,
    validate_jitter,
    validate_port,
)
from .session import (
    DEFAULT_STOP_TIMEOUT,
    BackgroundSession,
    SessionState,
    open_udp_socket,
)

logger = logging.getLogger(__name__)

# Callback type for a found host: receives the host's address
FoundCallback = Callable[[str], None]


class DiscoverySeeker:
    """
    Finds one discovery responder on the local network.

    Usage from a script:
        seeker = DiscoverySeeker(port=38800)
        seeker.start(on_found=print)
        address = seeker.wait()

    From a coroutine, start() picks up the running loop and callbacks are
    scheduled on it; `await seeker.wait_async()` returns the address.
    """

    def __init__(self, port: int = DEFAULT_PORT,
                 broadcast_interval: float = DEFAULT_BROADCAST_INTERVAL, *,
                 broadcast_address: str = BROADCAST_ADDRESS,
                 bind_host: str = '',
                 bind_port: Optional[int] = None,
                 jitter: float = 0.0,
                 dispatcher: Optional[Dispatcher] = None,
                 address_provider: Callable[[], LocalAddressSet] = local_addresses,
                 stop_timeout: float = DEFAULT_STOP_TIMEOUT):
        """
        Initialize a seeker. Nothing is bound until start().

        Args:
            port: Responder's discovery port (broadcast target)
            broadcast_interval: Seconds between broadcasts, also the receive timeout
            broadcast_address: Where requests are sent
            bind_host: Local address to bind
            bind_port: Local port to bind (default: same as port, 0 for any)
            jitter: Up to this many random seconds added to each interval,
                    spreads out seekers that start at the same moment
            dispatcher: Where found-callbacks run (default: picked at start())
            address_provider: Returns this machine's addresses, for self-filtering
            stop_timeout: Seconds stop() waits for the session thread
        """
        if bind_port is not None:
            validate_port(bind_port, allow_ephemeral=True)

        self.port = validate_port(port)
        self.broadcast_interval = validate_interval(broadcast_interval)
        self.broadcast_address = broadcast_address
        self.bind_host = bind_host
        self.bind_port = bind_port
        self.jitter = validate_jitter(jitter)
        self.stop_timeout = stop_timeout

        self._dispatcher = dispatcher
        self._address_provider = address_provider
        self._callbacks: List[FoundCallback] = []

        self._lock = threading.Lock()
        self._state = SessionState.IDLE
        self._session: Optional[BackgroundSession] = None
        self._last_session: Optional[BackgroundSession] = None
        self._last_on_found: Optional[FoundCallback] = None
        self._session_dispatcher: Optional[Dispatcher] = None
        self._local_addresses: Optional[LocalAddressSet] = None
        self._host: Optional[Endpoint] = None

    # -- properties ---------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SessionState.RUNNING

    @property
    def host_address(self) -> Optional[str]:
        """Address of the last host found, None until one is."""
        return self._host.host if self._host else None

    @property
    def host_endpoint(self) -> Optional[Endpoint]:
        return self._host

    @property
    def local_addresses(self) -> Optional[LocalAddressSet]:
        """Addresses filtered out in the current (or last) session."""
        return self._local_addresses

    @property
    def dispatcher(self) -> Optional[Dispatcher]:
        """Dispatcher used by the current (or last) session."""
        return self._session_dispatcher or self._dispatcher

    @property
    def local_endpoint(self) -> Optional[Endpoint]:
        """Where the current (or last) session's socket was bound."""
        session = self._session or self._last_session
        return session.local_endpoint if session else None

    def on_host_found(self, callback: FoundCallback):
        """Register a callback run (once per successful session) with the host's address."""
        self._callbacks.append(callback)

    # -- lifecycle ----------------------------------------------------------

    def start(self, on_found: Optional[FoundCallback] = None, *,
              port: Optional[int] = None,
              broadcast_interval: Optional[float] = None) -> bool:
        """
        Start seeking in the background.

        Args:
            on_found: Called once with the host's address, for this session only
            port: Override the discovery port
            broadcast_interval: Override the broadcast interval

        Returns:
            False if a session is already running (the call is ignored)

        Raises:
            ValueError: Invalid port or interval
            DiscoveryBindError: The socket could not be bound
        """
        port = validate_port(self.port if port is None else port)
        interval = validate_interval(
            self.broadcast_interval if broadcast_interval is None else broadcast_interval
        )

        with self._lock:
            if self._state is not SessionState.IDLE:
                logger.warning(f"Discovery already {self._state.value} on port {self.port}, "
                               "ignoring start request")
                return False
            self._state = SessionState.RUNNING

        try:
            # Fresh every session: addresses may have changed since the last one
            addresses = self._address_provider()
            if addresses.is_empty:
                logger.warning("No local addresses found: cannot filter out our own "
                               "broadcasts, the first datagram will be taken as the host")

            bind_port = port if self.bind_port is None else self.bind_port
            sock = open_udp_socket(self.bind_host, bind_port, broadcast=True)
        except BaseException:
            with self._lock:
                self._state = SessionState.IDLE
            raise

        self.port = port
        self.broadcast_interval = interval
        self._local_addresses = addresses
        self._host = None

        dispatcher = self._dispatcher or default_dispatcher()
        self._session_dispatcher = dispatcher

        session = BackgroundSession(
            name=f"discovery-seeker-{port}",
            sock=sock,
            main=partial(self._seek, addresses, port, interval),
        )
        self._session = session
        self._last_session = session
        self._last_on_found = on_found

        # Runs on the session thread once the result is in; hop to the caller
        session.result.add_done_callback(
            lambda _: dispatcher.call_soon(self._finish, session, on_found)
        )
        session.start()

        logger.info(f"Seeking host on port {port} (bound to {session.local_endpoint}, "
                    f"every {interval}s)")
        return True

    def stop(self):
        """
        Stop seeking. Found-callbacks will not run for the stopped session.

        No-op when nothing is running.
        """
        with self._lock:
            session = self._session
            if session is None or self._state is not SessionState.RUNNING:
                return
            self._state = SessionState.STOPPING
            session.notified = True

        session.cancel(self.stop_timeout)

        with self._lock:
            if self._session is session:
                self._session = None
                self._state = SessionState.IDLE
        logger.info("Discovery stopped")

    def wait(self, timeout: Optional[float] = None) -> str:
        """
        Block until the current (or last) session finds a host.

        If results are delivered through a QueueDispatcher, found-callbacks
        run here, on the waiting thread, before this returns.

        Returns:
            The host's address

        Raises:
            TimeoutError: No host found within timeout (the seek goes on)
            DiscoveryCancelled: The session was stopped
            OSError: The seek loop failed (the session is over)
            RuntimeError: start() was never called
        """
        session = self._last_session
        if session is None:
            raise RuntimeError("Discovery was never started")

        try:
            endpoint = session.result.result(timeout)
        except concurrent.futures.CancelledError:
            raise DiscoveryCancelled("Discovery was stopped before a host was found") from None
        except TimeoutError:
            raise TimeoutError(f"No host found on port {self.port} after {timeout}s") from None
        except Exception:
            # The seek loop failed; wrap up here if nobody else will
            if isinstance(self._session_dispatcher, QueueDispatcher):
                self._finish(session, self._last_on_found)
            raise

        if isinstance(self._session_dispatcher, QueueDispatcher):
            self._finish(session, self._last_on_found)
        return endpoint.host

    async def wait_async(self) -> str:
        """Await the current (or last) session's host address."""
        session = self._last_session
        if session is None:
            raise RuntimeError("Discovery was never started")

        try:
            endpoint = await asyncio.shield(asyncio.wrap_future(session.result))
        except asyncio.CancelledError:
            if session.result.cancelled():
                raise DiscoveryCancelled("Discovery was stopped before a host was found") from None
            raise
        except Exception:
            if isinstance(self._session_dispatcher, QueueDispatcher):
                self._finish(session, self._last_on_found)
            raise

        if isinstance(self._session_dispatcher, QueueDispatcher):
            self._finish(session, self._last_on_found)
        return endpoint.host

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.stop()

    # -- background ---------------------------------------------------------

    def _next_interval(self, interval: float) -> float:
        if self.jitter:
            return interval + random.uniform(0, self.jitter)
        return interval

    async def _seek(self, addresses: LocalAddressSet, port: int, interval: float,
                    sock: socket.socket) -> Endpoint:
        """Broadcast, wait, repeat. Runs on the session thread."""
        loop = asyncio.get_running_loop()
        target = (self.broadcast_address, port)
        attempt = 0

        while True:
            attempt += 1
            try:
                await loop.sock_sendto(sock, DISCOVERY_REQUEST, target)
                logger.debug(f"Discovery broadcast #{attempt} sent to {target[0]}:{port}")
            except OSError as e:
                # Network down or unreachable: try again next interval
                logger.warning(f"Discovery broadcast #{attempt} to {target[0]}:{port} failed: {e}")

            host = await self._receive_reply(loop, sock, addresses, self._next_interval(interval))
            if host is not None:
                logger.debug(f"Reply from {host} after {attempt} broadcast(s)")
                return host

    async def _receive_reply(self, loop: asyncio.AbstractEventLoop, sock: socket.socket,
                             addresses: LocalAddressSet, wait: float) -> Optional[Endpoint]:
        """
        Wait up to `wait` seconds for a datagram from another machine.

        Our own echoes are dropped without restarting the wait, so an echo
        never triggers an early rebroadcast.
        """
        deadline = loop.time() + wait

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None

            try:
                data, address = await asyncio.wait_for(
                    loop.sock_recvfrom(sock, MAX_DATAGRAM_SIZE), remaining
                )
            except asyncio.TimeoutError:
                logger.debug("No reply, broadcasting again")
                return None
            except ConnectionResetError:
                # Windows reports ICMP port-unreachable from an earlier send here
                continue

            if address[0] in addresses:
                logger.debug(f"Ignoring own broadcast from {address[0]}")
                continue

            return Endpoint.from_address(address)

    # -- caller side --------------------------------------------------------

    def _finish(self, session: BackgroundSession, on_found: Optional[FoundCallback] = None):
        """Wrap up a finished session. Runs on the caller's context."""
        session.join(self.stop_timeout)

        with self._lock:
            if self._session is session:
                self._session = None
                self._state = SessionState.IDLE
            if session.notified:
                return
            session.notified = True

        result = session.result
        if result.cancelled():
            return
        if result.exception() is not None:
            logger.error(f"Discovery on port {self.port} ended without a host: {result.exception()}")
            return

        self._host = result.result()
        logger.info(f"Host found at {self._host.host}")

        callbacks = list(self._callbacks)
        if on_found is not None:
            callbacks.append(on_found)

        for callback in callbacks:
            try:
                callback(self._host.host)
            except Exception as e:
                logger.error(f"Host-found callback error: {e}")
