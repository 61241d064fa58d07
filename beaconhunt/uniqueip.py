"""IP addresses bound to the network they were seen on."""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from bson.binary import UUID_SUBTYPE, Binary

from .netutil import (
    PUBLIC_NETWORK_NAME,
    PUBLIC_NETWORK_UUID,
    UNKNOWN_PRIVATE_NETWORK_NAME,
    UNKNOWN_PRIVATE_NETWORK_UUID,
    IPAddress,
    ip_is_publicly_routable,
    normalize_ip,
)


def _as_binary(value: Any) -> Binary:
    if isinstance(value, Binary):
        return value
    if isinstance(value, uuid.UUID):
        return Binary(value.bytes, UUID_SUBTYPE)
    return Binary(bytes(value), UUID_SUBTYPE)


def _uuid_key(value: Binary) -> bytes:
    return bytes([value.subtype]) + bytes(value)


@dataclass(frozen=True)
class UniqueIP:
    """An IP with a network UUID and name; the name plays no part in equality."""

    ip: str
    network_uuid: Binary
    network_name: str = field(default="", compare=False)

    def same_host(self, other: UniqueIP) -> bool:
        """True if both have the same IP and network UUID."""
        return (
            self.ip == other.ip
            and self.network_uuid.subtype == other.network_uuid.subtype
            and bytes(self.network_uuid) == bytes(other.network_uuid)
        )

    def map_key(self) -> bytes:
        """Key concatenating the IP and the network UUID."""
        return self.ip.encode() + _uuid_key(self.network_uuid)

    def bson_key(self) -> dict[str, Any]:
        """Query selector for this IP and network UUID."""
        return {"ip": self.ip, "network_uuid": self.network_uuid}

    def to_document(self) -> dict[str, Any]:
        return {
            "ip": self.ip,
            "network_uuid": self.network_uuid,
            "network_name": self.network_name,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> UniqueIP:
        return cls(
            ip=doc["ip"],
            network_uuid=_as_binary(doc["network_uuid"]),
            network_name=doc.get("network_name", ""),
        )

    def as_src(self) -> UniqueSrcIP:
        return UniqueSrcIP(self.ip, self.network_uuid, self.network_name)

    def as_dst(self) -> UniqueDstIP:
        return UniqueDstIP(self.ip, self.network_uuid, self.network_name)


@dataclass(frozen=True)
class UniqueSrcIP:
    """A unique IP acting as the source of a pair."""

    src_ip: str
    src_network_uuid: Binary
    src_network_name: str = field(default="", compare=False)

    def unpair(self) -> UniqueIP:
        return UniqueIP(self.src_ip, self.src_network_uuid, self.src_network_name)

    def bson_key(self) -> dict[str, Any]:
        return {"src": self.src_ip, "src_network_uuid": self.src_network_uuid}


@dataclass(frozen=True)
class UniqueDstIP:
    """A unique IP acting as the destination of a pair."""

    dst_ip: str
    dst_network_uuid: Binary
    dst_network_name: str = field(default="", compare=False)

    def unpair(self) -> UniqueIP:
        return UniqueIP(self.dst_ip, self.dst_network_uuid, self.dst_network_name)

    def bson_key(self) -> dict[str, Any]:
        return {"dst": self.dst_ip, "dst_network_uuid": self.dst_network_uuid}


@dataclass(frozen=True)
class UniqueIPPair:
    """An ordered source/destination pair of unique IPs."""

    src_ip: str
    src_network_uuid: Binary
    src_network_name: str = field(compare=False)
    dst_ip: str
    dst_network_uuid: Binary
    dst_network_name: str = field(compare=False)

    @property
    def src(self) -> UniqueSrcIP:
        return UniqueSrcIP(self.src_ip, self.src_network_uuid, self.src_network_name)

    @property
    def dst(self) -> UniqueDstIP:
        return UniqueDstIP(self.dst_ip, self.dst_network_uuid, self.dst_network_name)

    def map_key(self) -> bytes:
        """Key concatenating both IPs and both network UUIDs."""
        return (
            self.src_ip.encode()
            + self.dst_ip.encode()
            + _uuid_key(self.src_network_uuid)
            + _uuid_key(self.dst_network_uuid)
        )

    def bson_key(self) -> dict[str, Any]:
        return {
            "src": self.src_ip,
            "src_network_uuid": self.src_network_uuid,
            "dst": self.dst_ip,
            "dst_network_uuid": self.dst_network_uuid,
        }

    def to_document(self) -> dict[str, Any]:
        return {
            "src": self.src_ip,
            "src_network_uuid": self.src_network_uuid,
            "src_network_name": self.src_network_name,
            "dst": self.dst_ip,
            "dst_network_uuid": self.dst_network_uuid,
            "dst_network_name": self.dst_network_name,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> UniqueIPPair:
        return cls(
            src_ip=doc["src"],
            src_network_uuid=_as_binary(doc["src_network_uuid"]),
            src_network_name=doc.get("src_network_name", ""),
            dst_ip=doc["dst"],
            dst_network_uuid=_as_binary(doc["dst_network_uuid"]),
            dst_network_name=doc.get("dst_network_name", ""),
        )


def new_unique_ip(ip: str | IPAddress, agent_uuid: str, agent_name: str) -> UniqueIP:
    """Bind an IP to its network.

    Public addresses get the public network; private addresses get the agent's
    network, or the unknown private network if the agent data is invalid.
    """
    address = normalize_ip(ip)
    text = str(address)

    if ip_is_publicly_routable(address):
        return UniqueIP(text, PUBLIC_NETWORK_UUID, PUBLIC_NETWORK_NAME)

    try:
        parsed = uuid.UUID(agent_uuid)
    except ValueError:
        parsed = None
    if parsed is None or not agent_uuid or not agent_name:
        return UniqueIP(text, UNKNOWN_PRIVATE_NETWORK_UUID, UNKNOWN_PRIVATE_NETWORK_NAME)

    return UniqueIP(text, Binary(parsed.bytes, UUID_SUBTYPE), agent_name)


def new_unique_ip_pair(source: UniqueIP, destination: UniqueIP) -> UniqueIPPair:
    return UniqueIPPair(
        src_ip=source.ip,
        src_network_uuid=source.network_uuid,
        src_network_name=source.network_name,
        dst_ip=destination.ip,
        dst_network_uuid=destination.network_uuid,
        dst_network_name=destination.network_name,
    )


class UniqueIPSet(Sequence):
    """Insertion-ordered collection holding each unique IP at most once."""

    def __init__(self, ips: Iterable[UniqueIP] = ()) -> None:
        self._items: list[UniqueIP] = []
        for ip in ips:
            self.insert(ip)

    def insert(self, ip: UniqueIP) -> None:
        """Add the IP unless an equal one is already held."""
        if ip not in self:
            self._items.append(ip)

    def __contains__(self, ip: object) -> bool:
        if not isinstance(ip, UniqueIP):
            return False
        return any(item.same_host(ip) for item in self._items)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return UniqueIPSet(self._items[index])
        return self._items[index]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[UniqueIP]:
        return iter(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UniqueIPSet):
            return NotImplemented
        return self._items == other._items

    def __repr__(self) -> str:
        return f"UniqueIPSet({self._items!r})"

    def documents(self) -> list[dict[str, Any]]:
        """The members as database documents."""
        return [ip.to_document() for ip in self._items]