"""
Caller-Context Dispatch

Discovery loops run on their own threads, but results belong to whoever
started them. A dispatcher is how a background thread hands a callable
back to that caller without touching the caller's state directly.

- AsyncioDispatcher: the caller runs an event loop, use call_soon_threadsafe
- QueueDispatcher: the caller drains a queue from its own thread, typically
  once per iteration of its main loop
"""

import asyncio
import logging
import queue
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class Dispatcher(Protocol):
    """Anything that can run a callback on the caller's execution context."""

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        ...


class AsyncioDispatcher:
    """Schedules callbacks on an asyncio event loop, from any thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.loop = loop

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            self.loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # The loop was closed while discovery was still running
            logger.warning(f"Event loop closed, dropping {getattr(callback, '__name__', callback)}")


class QueueDispatcher:
    """
    Thread-safe queue of callbacks, run when the owner asks for them.

    Mirrors a game-style update loop: background threads enqueue, the
    owning thread calls process_pending() whenever it gets a chance.
    """

    def __init__(self):
        self._queue: "queue.SimpleQueue" = queue.SimpleQueue()

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        self._queue.put((callback, args))

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def process_pending(self) -> int:
        """Run every queued callback on the calling thread. Returns how many ran."""
        count = 0
        while True:
            try:
                callback, args = self._queue.get_nowait()
            except queue.Empty:
                return count
            callback(*args)
            count += 1

    def wait_and_process(self, timeout: Optional[float] = None) -> int:
        """Block until at least one callback is queued (or timeout), then run them all."""
        try:
            callback, args = self._queue.get(timeout=timeout)
        except queue.Empty:
            return 0
        callback(*args)
        return 1 + self.process_pending()


def default_dispatcher() -> Dispatcher:
    """
    Pick a dispatcher for the current caller.

    Inside a coroutine, results go back to the running loop. Otherwise the
    caller gets a queue it is expected to drain.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return QueueDispatcher()
    return AsyncioDispatcher(loop)
