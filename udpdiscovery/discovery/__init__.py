"""
Discovery Module - Finding a host on the LAN

UDP broadcast discovery with two roles:
- DiscoveryResponder: the host, answers every request
- DiscoverySeeker: the client, broadcasts until a host answers
"""

from .addresses import LocalAddressSet, local_addresses
from .dispatch import AsyncioDispatcher, Dispatcher, QueueDispatcher, default_dispatcher
from .errors import DiscoveryBindError, DiscoveryCancelled, DiscoveryError
from .protocol import (
    BROADCAST_ADDRESS,
    DEFAULT_BROADCAST_INTERVAL,
    DEFAULT_PORT,
    DISCOVERY_REQUEST,
    DISCOVERY_RESPONSE,
    Endpoint,
)
from .responder import DiscoveryResponder
from .seeker import DiscoverySeeker, FoundCallback
from .session import SessionState

__all__ = [
    'DiscoverySeeker',
    'DiscoveryResponder',
    'FoundCallback',
    'SessionState',
    'Endpoint',
    'LocalAddressSet',
    'local_addresses',
    'Dispatcher',
    'AsyncioDispatcher',
    'QueueDispatcher',
    'default_dispatcher',
    'DiscoveryError',
    'DiscoveryBindError',
    'DiscoveryCancelled',
    'DEFAULT_PORT',
    'DEFAULT_BROADCAST_INTERVAL',
    'BROADCAST_ADDRESS',
    'DISCOVERY_REQUEST',
    'DISCOVERY_RESPONSE',
]
