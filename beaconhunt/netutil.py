"""IP address helpers: routability checks, subnet and domain matching."""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable

from bson.binary import UUID_SUBTYPE, Binary

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address
IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network

PUBLIC_NETWORK_UUID = Binary(b"\xff" * 16, UUID_SUBTYPE)
"""Network UUID bound to publicly routable addresses."""

PUBLIC_NETWORK_NAME = "Public"

UNKNOWN_PRIVATE_NETWORK_UUID = Binary(b"\xff" * 15 + b"\xfe", UUID_SUBTYPE)
"""Network UUID bound to private addresses with no valid network data."""

UNKNOWN_PRIVATE_NETWORK_NAME = "Unknown Private"

_IPV4_LINK_LOCAL_MULTICAST = ipaddress.ip_network("224.0.0.0/24")


def normalize_ip(ip: str | IPAddress) -> IPAddress:
    """Return an address object; IPv4-mapped IPv6 addresses become IPv4.

    Raises ValueError for text that is not an IP address.
    """
    if isinstance(ip, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        address = ip
    else:
        if "%" in ip:
            raise ValueError(f"{ip!r} is not a valid IP address")
        address = ipaddress.ip_address(ip)
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


def _parse_cidr(text: str) -> IPNetwork:
    if "/" not in text:
        raise ValueError(f"{text!r} is not in CIDR notation")
    return ipaddress.ip_network(text, strict=False)


def parse_subnets(subnets: Iterable[str]) -> list[IPNetwork]:
    """Parse CIDR ranges; a bare address is read as a /32 range.

    Raises ValueError on an entry that is neither.
    """
    parsed = []
    for entry in subnets:
        try:
            block = _parse_cidr(entry)
        except ValueError:
            try:
                block = _parse_cidr(entry + "/32")
            except ValueError as exc:
                raise ValueError(f"Error parsing CIDR entry: {entry}") from exc
        parsed.append(block)
    return parsed


_PRIVATE_IP_BLOCKS = parse_subnets(
    [
        "10.0.0.0/8",  # RFC1918
        "172.16.0.0/12",  # RFC1918
        "192.168.0.0/16",  # RFC1918
        "fc00::/7",  # IPv6 unique local
    ]
)


def _is_link_local_multicast(address: IPAddress) -> bool:
    if isinstance(address, ipaddress.IPv4Address):
        return address in _IPV4_LINK_LOCAL_MULTICAST
    packed = address.packed
    return packed[0] == 0xFF and packed[1] & 0x0F == 0x02


def ip_is_publicly_routable(ip: str | IPAddress) -> bool:
    """True unless the address is loopback, link-local or in a private block."""
    address = normalize_ip(ip)
    if address.is_loopback or address.is_link_local or _is_link_local_multicast(address):
        return False
    return not contains_ip(_PRIVATE_IP_BLOCKS, address)


def contains_ip(subnets: Iterable[IPNetwork], ip: str | IPAddress) -> bool:
    """True if any of the subnets contains the address."""
    address = normalize_ip(ip)
    return any(
        block.version == address.version and address in block for block in subnets
    )


def contains_domain(domains: Iterable[str], host: str) -> bool:
    """True if host matches an entry exactly or through a leading-* wildcard."""
    for entry in domains:
        if "*" in entry:
            wildcard = entry.removeprefix("*")
            if host.endswith(wildcard):
                return True
            # "*.example.com" also covers "example.com" itself
            if host == wildcard.removeprefix("."):
                return True
        elif host == entry:
            return True
    return False


def is_ip(ip: str) -> bool:
    """True if the text is a valid IPv4 or IPv6 address."""
    try:
        normalize_ip(ip)
    except ValueError:
        return False
    return True


def is_ipv4(address: str) -> bool:
    """Cheap check: fewer than two colons means IPv4."""
    return address.count(":") < 2


def ipv4_to_binary(ipv4: str | IPAddress) -> int:
    """Integer value of the last four bytes of the address."""
    address = ipv4
    if isinstance(address, str):
        address = ipaddress.ip_address(address)
    if isinstance(address, ipaddress.IPv4Address):
        return int(address)
    return int(address) & 0xFFFFFFFF