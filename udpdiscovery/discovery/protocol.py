"""
Discovery Wire Protocol

Design Decision: Message Format
===============================

Options Considered:
1. JSON announce/discover messages (node id, ports, ...)
2. Fixed literal payloads

Decision: Fixed literal payloads
- The reply only needs to exist: its sender address is the answer
- Nothing to parse, so nothing to reject
- Compatible with existing hosts that speak the same two strings

Messages (UTF-8, one per datagram):
- Seeker -> broadcast:port      "Discovery Message"
- Responder -> sender endpoint  "Host ready."

Payloads are never validated by either side. Any datagram counts.
"""

import math
from dataclasses import dataclass
from typing import Tuple

# Must match between seeker and responder
DEFAULT_PORT = 38800

# Seconds between two broadcasts, also the seeker's receive timeout
DEFAULT_BROADCAST_INTERVAL = 3.0

# Limited broadcast, delivered to every host on the local segment
BROADCAST_ADDRESS = "255.255.255.255"

DISCOVERY_REQUEST = "Discovery Message".encode("utf-8")
DISCOVERY_RESPONSE = "Host ready.".encode("utf-8")

# Large enough for any datagram we will ever be sent
MAX_DATAGRAM_SIZE = 4096


@dataclass(frozen=True)
class Endpoint:
    """Address and port of a peer, as observed on the wire."""
    host: str
    port: int

    @classmethod
    def from_address(cls, address: Tuple) -> 'Endpoint':
        """Build from a socket address tuple (IPv4 or IPv6 form)."""
        return cls(host=address[0], port=address[1])

    def to_address(self) -> Tuple[str, int]:
        return (self.host, self.port)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


def validate_port(port: int, allow_ephemeral: bool = False) -> int:
    """
    Check a discovery port, returning it unchanged.

    Port 0 (let the OS pick) is only accepted for sockets we bind, never
    for a port we send to.
    """
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError(f"Port must be an integer, got {port!r}")
    lowest = 0 if allow_ephemeral else 1
    if not lowest <= port <= 65535:
        raise ValueError(f"Port out of range ({lowest}-65535): {port}")
    return port


def validate_interval(interval: float) -> float:
    """Check a broadcast interval in seconds, returning it as a float."""
    try:
        interval = float(interval)
    except (TypeError, ValueError):
        raise ValueError(f"Broadcast interval must be a number, got {interval!r}") from None
    if not interval > 0:
        raise ValueError(f"Broadcast interval must be positive: {interval}")
    return interval


def validate_jitter(jitter: float) -> float:
    """Check a jitter in seconds (zero allowed), returning it as a float."""
    try:
        jitter = float(jitter)
    except (TypeError, ValueError):
        raise ValueError(f"Jitter must be a number, got {jitter!r}") from None
    if not 0 <= jitter < math.inf:
        raise ValueError(f"Jitter must be a finite, non-negative number: {jitter}")
    return jitter
