"""
Local Address Enumeration

A broadcast is delivered to every host on the segment, the sender
included, so a seeker sees its own "Discovery Message" come back. The
only way to tell that echo apart from a real reply is the sender address:
if it belongs to this machine, it is ours.

Sources, merged:
- Every address bound to a network interface (psutil)
- Every address the host name resolves to (getaddrinfo)
"""

import ipaddress
import logging
import socket
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Iterator, Optional, Union

import psutil

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def parse_address(address: Union[str, IPAddress]) -> Optional[IPAddress]:
    """
    Normalize an address for comparison.

    IPv6 zone suffixes ("fe80::1%eth0") are dropped since the same
    link-local address can show up with or without one.
    Returns None for anything that is not an IP address.
    """
    if isinstance(address, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return address
    if not isinstance(address, str):
        return None
    try:
        return ipaddress.ip_address(address.split('%', 1)[0])
    except ValueError:
        return None


@dataclass(frozen=True)
class LocalAddressSet:
    """
    Immutable set of addresses belonging to this machine.

    Built once per discovery session and only read afterwards, so it can be
    shared with the background thread without locking.
    """
    addresses: FrozenSet[IPAddress] = frozenset()

    @classmethod
    def of(cls, addresses: Iterable[Union[str, IPAddress]]) -> 'LocalAddressSet':
        parsed = set()
        for address in addresses:
            ip = parse_address(address)
            if ip is None:
                logger.debug(f"Ignoring non-IP local address {address!r}")
                continue
            parsed.add(ip)
        return cls(frozenset(parsed))

    @property
    def is_empty(self) -> bool:
        return not self.addresses

    def __contains__(self, address) -> bool:
        ip = parse_address(address)
        return ip is not None and ip in self.addresses

    def __iter__(self) -> Iterator[IPAddress]:
        return iter(sorted(self.addresses, key=lambda ip: (ip.version, ip)))

    def __len__(self) -> int:
        return len(self.addresses)

    def __str__(self) -> str:
        return ", ".join(str(ip) for ip in self)


def _interface_addresses() -> Iterator[str]:
    """Addresses bound to any network interface."""
    families = (socket.AF_INET, socket.AF_INET6)
    for nic, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family in families:
                yield addr.address


def _host_name_addresses() -> Iterator[str]:
    """Addresses the machine's host name resolves to."""
    host_name = socket.gethostname()
    try:
        infos = socket.getaddrinfo(host_name, None)
    except socket.gaierror as e:
        logger.debug(f"Could not resolve host name {host_name!r}: {e}")
        return
    for family, _, _, _, sockaddr in infos:
        if family in (socket.AF_INET, socket.AF_INET6):
            yield sockaddr[0]


def local_addresses() -> LocalAddressSet:
    """
    Get every address held by this machine.

    Call again for each discovery session: interfaces come and go
    (DHCP renewals, VPNs, Wi-Fi roaming) between runs.
    """
    found = []
    try:
        found.extend(_interface_addresses())
    except OSError as e:
        logger.warning(f"Could not enumerate network interfaces: {e}")
    found.extend(_host_name_addresses())

    addresses = LocalAddressSet.of(found)
    logger.debug(f"Local addresses: {addresses}")
    return addresses
