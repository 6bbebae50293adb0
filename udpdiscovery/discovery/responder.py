"""
Discovery Responder (host role)

Answers every datagram on the discovery port with "Host ready.", for as
long as it runs. It never stops on its own: several seekers may poll
before one of them connects, so stopping is up to the owner (usually once
a client has connected).
"""

import asyncio
import logging
import socket
import threading
from typing import Optional

from .protocol import DEFAULT_PORT, DISCOVERY_RESPONSE, MAX_DATAGRAM_SIZE, Endpoint, validate_port
from .session import DEFAULT_STOP_TIMEOUT, BackgroundSession, SessionState, open_udp_socket

logger = logging.getLogger(__name__)


class DiscoveryResponder:
    """Replies to discovery broadcasts until stopped."""

    def __init__(self, port: int = DEFAULT_PORT, *,
                 bind_host: str = '',
                 autostart: bool = False,
                 reuse_address: bool = False,
                 stop_timeout: float = DEFAULT_STOP_TIMEOUT):
        """
        Initialize a responder.

        Args:
            port: Discovery port to listen on (0 lets the OS pick one)
            bind_host: Local address to bind ('' for all interfaces)
            autostart: Start responding right away
            reuse_address: Allow sharing the port with other sockets
            stop_timeout: Seconds stop() waits for the session thread
        """
        self.port = validate_port(port, allow_ephemeral=True)
        self.bind_host = bind_host
        self.reuse_address = reuse_address
        self.stop_timeout = stop_timeout

        # Replies sent by the current (or last) session
        self.requests_served = 0

        self._lock = threading.Lock()
        self._state = SessionState.IDLE
        self._session: Optional[BackgroundSession] = None
        self._last_session: Optional[BackgroundSession] = None
        self._bound: Optional[Endpoint] = None

        if autostart:
            self.start()

    @property
    def state(self) -> SessionState:
        self._reap()
        return self._state

    @property
    def is_running(self) -> bool:
        self._reap()
        session = self._session
        return (self._state is SessionState.RUNNING
                and session is not None and session.is_alive)

    @property
    def error(self) -> Optional[BaseException]:
        """Exception that ended the current (or last) session, if it failed."""
        session = self._last_session
        if session is None or not session.result.done() or session.result.cancelled():
            return None
        return session.result.exception()

    @property
    def bound_endpoint(self) -> Optional[Endpoint]:
        """Local endpoint of the current (or last) session."""
        return self._bound

    def start(self, port: Optional[int] = None) -> bool:
        """
        Start answering discovery requests.

        The socket is bound before this returns, so a port that is already
        taken fails here and not later in the background.

        Returns:
            False if already running (the call is ignored)

        Raises:
            DiscoveryBindError: The socket could not be bound
        """
        port = validate_port(self.port if port is None else port, allow_ephemeral=True)

        self._reap()

        with self._lock:
            if self._state is not SessionState.IDLE:
                logger.warning(f"Responder already {self._state.value} on port {self.port}, "
                               "ignoring start request")
                return False
            self._state = SessionState.RUNNING

        try:
            sock = open_udp_socket(self.bind_host, port, reuse_address=self.reuse_address)
        except BaseException:
            with self._lock:
                self._state = SessionState.IDLE
            raise

        self.port = port
        self.requests_served = 0

        session = BackgroundSession(
            name=f"discovery-responder-{port}",
            sock=sock,
            main=self._respond,
        )
        self._session = session
        self._last_session = session
        self._bound = session.local_endpoint
        session.start()

        logger.info(f"Responding to discovery on {self._bound}")
        return True

    def stop(self):
        """
        Stop answering and release the port.

        Unblocks the pending receive; no-op when not running.
        """
        with self._lock:
            session = self._session
            if session is None or self._state is not SessionState.RUNNING:
                return
            self._state = SessionState.STOPPING

        session.cancel(self.stop_timeout)

        with self._lock:
            self._session = None
            self._state = SessionState.IDLE
        logger.info(f"Responder on port {self.port} stopped after "
                    f"{self.requests_served} request(s)")

    def _reap(self):
        """Return to IDLE if the session thread died on an error."""
        with self._lock:
            session = self._session
            if (self._state is not SessionState.RUNNING or session is None
                    or not session.result.done() or session.result.cancelled()):
                return
            self._session = None
            self._state = SessionState.IDLE

        # The thread closes the socket on its way out
        session.join(self.stop_timeout)
        logger.warning(f"Responder on port {self.port} stopped: {session.result.exception()}")

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.stop()

    async def _respond(self, sock: socket.socket):
        """Receive, reply, repeat. Runs on the session thread until cancelled."""
        loop = asyncio.get_running_loop()

        while True:
            try:
                data, address = await loop.sock_recvfrom(sock, MAX_DATAGRAM_SIZE)
            except ConnectionResetError:
                # Windows reports ICMP port-unreachable from an earlier reply here
                continue

            sender = Endpoint.from_address(address)
            logger.debug(f"Discovery request from {sender} ({len(data)} bytes)")

            # Reply to wherever it came from, whatever it contained
            try:
                await loop.sock_sendto(sock, DISCOVERY_RESPONSE, address)
            except OSError as e:
                logger.warning(f"Could not answer {sender}: {e}")
                continue

            self.requests_served += 1
