"""
UDP Discovery

Zero-configuration host discovery on a local network by UDP broadcast.
"""

from .discovery import (
    DiscoveryBindError,
    DiscoveryCancelled,
    DiscoveryError,
    DiscoveryResponder,
    DiscoverySeeker,
    Endpoint,
    LocalAddressSet,
    local_addresses,
)

__version__ = '0.1.0'

__all__ = [
    'DiscoverySeeker',
    'DiscoveryResponder',
    'Endpoint',
    'LocalAddressSet',
    'local_addresses',
    'DiscoveryError',
    'DiscoveryBindError',
    'DiscoveryCancelled',
    '__version__',
]
