"""
Background Discovery Sessions

Design Decision: Execution Model
================================

Options Considered:
1. Blocking socket on a thread, aborted from outside
   - Python has no safe way to kill a thread
   - Closing a socket does not reliably wake a blocked recvfrom() on Linux
2. Run on the caller's event loop
   - Caller may not have one (scripts, game-style update loops)
   - A busy caller loop would delay replies
3. Dedicated thread running its own private event loop

Decision: Dedicated thread + private asyncio loop
- One thread per active session, nothing shared
- Receives are awaited with loop.sock_recvfrom(), so cancelling the task
  unblocks them at once, timeout or not
- stop() is a cancel request marshalled with call_soon_threadsafe; the
  CancelledError that follows is normal teardown
- The session thread owns the socket and closes it on the way out

The outcome of the session coroutine lands in a one-shot
concurrent.futures.Future, which is how results cross threads.
"""

import asyncio
import concurrent.futures
import logging
import socket
import threading
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from .errors import DiscoveryBindError
from .protocol import Endpoint

logger = logging.getLogger(__name__)

# How long stop() waits for a session thread to wind down
DEFAULT_STOP_TIMEOUT = 5.0


class SessionState(Enum):
    """Lifecycle of a seeker or responder."""
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"


def open_udp_socket(host: str, port: int, broadcast: bool = False,
                    reuse_address: bool = False) -> socket.socket:
    """
    Create and bind a non-blocking IPv4 UDP socket.

    Raises:
        DiscoveryBindError: If the socket cannot be created or bound
            (port in use, insufficient permission, bad address)
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    except OSError as e:
        raise DiscoveryBindError(host, port, e) from e

    try:
        if reuse_address:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            # Try to set SO_REUSEPORT if available (for macOS/Linux)
            if hasattr(socket, 'SO_REUSEPORT'):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        if broadcast:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.bind((host, port))
        sock.setblocking(False)
    except OSError as e:
        sock.close()
        raise DiscoveryBindError(host, port, e) from e

    return sock


SessionMain = Callable[[socket.socket], Awaitable[Any]]


class BackgroundSession:
    """
    One run of a discovery loop on its own thread.

    The session takes ownership of an already-bound socket. Binding happens
    in the caller's thread so bind errors are raised there, before any
    thread exists.
    """

    def __init__(self, name: str, sock: socket.socket, main: SessionMain):
        """
        Args:
            name: Thread name, shows up in logs and debuggers
            sock: Bound, non-blocking UDP socket (closed by the session)
            main: Coroutine function run with the socket; its return value
                  becomes the session result
        """
        self.name = name
        self.sock = sock
        self.local_endpoint = Endpoint.from_address(sock.getsockname())
        self.result: concurrent.futures.Future = concurrent.futures.Future()

        # Set once the result has been reported to the caller
        self.notified = False

        self._main = main
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self._ready = threading.Event()

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the thread and wait until it is ready to be cancelled."""
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        self._ready.wait()

    def _run(self):
        loop = asyncio.new_event_loop()
        try:
            self._loop = loop
            self._task = loop.create_task(self._main(self.sock))
            self._ready.set()

            try:
                value = loop.run_until_complete(self._task)
            except asyncio.CancelledError:
                logger.debug(f"{self.name}: cancelled")
                self.result.cancel()
            except Exception as e:
                logger.exception(f"{self.name}: discovery loop failed")
                self.result.set_exception(e)
            else:
                self.result.set_result(value)
        finally:
            self._ready.set()
            self.sock.close()
            loop.close()

    def cancel(self, timeout: float = DEFAULT_STOP_TIMEOUT) -> bool:
        """
        Ask the session to stop and wait for its thread to exit.

        Returns:
            True if the thread finished within timeout
        """
        loop, task = self._loop, self._task
        if loop is not None and task is not None and not task.done():
            try:
                loop.call_soon_threadsafe(task.cancel)
            except RuntimeError:
                # Loop already closed: the session finished on its own
                logger.debug(f"{self.name}: already finished")

        if not self.join(timeout):
            logger.warning(f"{self.name}: did not stop within {timeout}s, closing socket")
            self.sock.close()
            return False
        return True

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the session thread. Safe to call from the session thread itself."""
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return True
        thread.join(timeout)
        return not thread.is_alive()
