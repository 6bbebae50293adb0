"""
Discovery Errors

Only session-start failures and genuinely unexpected socket errors reach
the caller. Receive timeouts and self-echoes are recovered inside the
loops and never show up here.
"""

from typing import Optional


class DiscoveryError(Exception):
    """Base class for discovery failures."""


class DiscoveryBindError(DiscoveryError, OSError):
    """The discovery socket could not be created or bound."""

    def __init__(self, host: str, port: int, cause: Optional[OSError] = None):
        self.host = host
        self.port = port
        self.cause = cause
        where = f"{host or '*'}:{port}"
        reason = f": {cause.strerror or cause}" if cause else ""
        super().__init__(f"Cannot bind discovery socket on {where}{reason}")


class DiscoveryCancelled(DiscoveryError):
    """A seek that was being waited on was stopped before finding a host."""
