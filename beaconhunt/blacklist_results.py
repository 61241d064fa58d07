"""Reports on blacklisted hostnames and IPs and the hosts that talked to them."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .uniqueip import UniqueIP

_UCONN_COLLECTION = "uconn"

Stage = dict[str, Any]


@dataclass(frozen=True)
class IPResult:
    """A blacklisted IP with totals over the connections that involve it."""

    host: UniqueIP
    connections: int = 0
    unique_connections: int = 0
    total_bytes: int = 0
    peers: list[UniqueIP] = field(default_factory=list)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> IPResult:
        return cls(
            host=UniqueIP.from_document(dict(doc)),
            connections=int(doc.get("conn_count", 0)),
            unique_connections=int(doc.get("uconn_count", 0)),
            total_bytes=int(doc.get("total_bytes", 0)),
            peers=[UniqueIP.from_document(dict(peer)) for peer in doc.get("peers") or []],
        )


@dataclass(frozen=True)
class HostnameResult:
    """A blacklisted hostname with totals over the connections made to it."""

    host: str
    connections: int = 0
    unique_connections: int = 0
    total_bytes: int = 0
    connected_hosts: list[UniqueIP] = field(default_factory=list)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> HostnameResult:
        return cls(
            host=doc.get("host", ""),
            connections=int(doc.get("conn_count", 0)),
            unique_connections=int(doc.get("uconn_count", 0)),
            total_bytes=int(doc.get("total_bytes", 0)),
            connected_hosts=[
                UniqueIP.from_document(dict(src)) for src in doc.get("sources") or []
            ],
        )


def _ref(path: str) -> str:
    return f"${path}"


def _unwind(path: str) -> Stage:
    return {"$unwind": _ref(path)}


def _size_of(path: str) -> dict[str, Any]:
    return {"$size": {"$ifNull": [_ref(path), []]}}


def _traffic() -> dict[str, str]:
    """Connection count and byte total of one unwound uconn chunk."""
    return {"conns": _ref("uconn.dat.count"), "tbytes": _ref("uconn.dat.tbytes")}


def _totals() -> dict[str, Any]:
    return {"conns": {"$sum": _ref("conns")}, "tbytes": {"$sum": _ref("tbytes")}}


def _side_fields(out_prefix: str, side: str) -> dict[str, str]:
    """References to the ip, uuid and name of one side of a joined uconn."""
    return {
        f"{out_prefix}_ip": _ref(f"uconn.{side}"),
        f"{out_prefix}_network_uuid": _ref(f"uconn.{side}_network_uuid"),
        f"{out_prefix}_network_name": _ref(f"uconn.{side}_network_name"),
    }


def _unique_ip_doc(ip: str, uuid: str, name: str) -> dict[str, str]:
    return {"ip": _ref(ip), "network_uuid": _ref(uuid), "network_name": _ref(name)}


def _uconn_lookup(host_field: str, ip_path: str, uuid_path: str) -> Stage:
    """Join the uconn documents whose host_field side matches the given host."""
    conditions = [
        {"$eq": [_ref(host_field), "$$ip"]},
        {"$eq": [_ref(f"{host_field}_network_uuid"), "$$network_uuid"]},
    ]
    return {
        "$lookup": {
            "from": _UCONN_COLLECTION,
            "let": {"ip": _ref(ip_path), "network_uuid": _ref(uuid_path)},
            "pipeline": [{"$match": {"$expr": {"$and": conditions}}}],
            "as": "uconn",
        }
    }


def _ordering(sort: str, limit: int, no_limit: bool) -> list[Stage]:
    stages: list[Stage] = [{"$sort": {sort: -1}}]
    if not no_limit:
        stages.append({"$limit": limit})
    return stages


def hostname_results_pipeline(sort: str, limit: int, no_limit: bool) -> list[Stage]:
    """Aggregation over hostnames finding blacklisted names and their clients.

    Results are sorted descending on sort (uconn_count, conn_count or total_bytes).
    """
    resolved_ips = [
        {"$match": {"blacklisted": True}},
        {"$project": {"host": 1, "dat.ips": 1}},
        _unwind("dat"),
        _unwind("dat.ips"),
        # the name is not trusted to agree with the uuid, so sets ignore it
        {"$project": {"dat.ips.network_name": 0}},
        {"$group": {"_id": _ref("host"), "ips": {"$addToSet": _ref("dat.ips")}}},
        _unwind("ips"),
    ]
    per_source = [
        _uconn_lookup("dst", "ips.ip", "ips.network_uuid"),
        _unwind("uconn"),
        _unwind("uconn.dat"),
        {"$project": {"host": 1, **_side_fields("src", "src"), **_traffic()}},
        {
            "$group": {
                "_id": {
                    "host": _ref("_id"),
                    "src_ip": _ref("src_ip"),
                    "src_network_uuid": _ref("src_network_uuid"),
                },
                "src_network_name": {"$last": _ref("src_network_name")},
                **_totals(),
            }
        },
        {
            "$project": {
                "_id": 0,
                "host": _ref("_id.host"),
                "conns": 1,
                "tbytes": 1,
                "src": _unique_ip_doc(
                    "_id.src_ip", "_id.src_network_uuid", "src_network_name"
                ),
            }
        },
    ]
    per_host = [
        {
            "$group": {
                "_id": _ref("host"),
                **_totals(),
                "sources": {"$addToSet": _ref("src")},
            }
        },
        {
            "$project": {
                "_id": 0,
                "host": _ref("_id"),
                "uconn_count": _size_of("sources"),
                "conn_count": _ref("conns"),
                "total_bytes": _ref("tbytes"),
                "sources": 1,
            }
        },
    ]
    return resolved_ips + per_source + per_host + _ordering(sort, limit, no_limit)


def ip_results_pipeline(
    sort: str, limit: int, no_limit: bool, source: bool
) -> list[Stage]:
    """Aggregation over hosts finding blacklisted IPs and their peers.

    With source, the blacklisted IPs are connection sources and their peers the
    destinations; otherwise the other way round.
    """
    host_field, peer_field = ("src", "dst") if source else ("dst", "src")
    own_ip = {"ip": 1, "network_uuid": 1, "network_name": 1}

    joined = [
        {
            "$match": {
                "$and": [
                    {"blacklisted": True},
                    {f"dat.count_{host_field}": {"$gt": 0}},
                ]
            }
        },
        {"$project": dict(own_ip)},
        _uconn_lookup(host_field, "ip", "network_uuid"),
        _unwind("uconn"),
        _unwind("uconn.dat"),
        {"$project": {**own_ip, **_side_fields("peer", peer_field), **_traffic()}},
    ]
    # one network name is kept per peer uuid, since names drift over time
    per_peer = [
        {
            "$group": {
                "_id": {
                    "ip": _ref("ip"),
                    "network_uuid": _ref("network_uuid"),
                    "peer_ip": _ref("peer_ip"),
                    "peer_network_uuid": _ref("peer_network_uuid"),
                },
                "network_name": {"$last": _ref("network_name")},
                "peer_network_name": {"$last": _ref("peer_network_name")},
                **_totals(),
            }
        },
        {
            "$project": {
                "_id": 0,
                "ip": _ref("_id.ip"),
                "network_uuid": _ref("_id.network_uuid"),
                "network_name": _ref("network_name"),
                "peer": _unique_ip_doc(
                    "_id.peer_ip", "_id.peer_network_uuid", "peer_network_name"
                ),
                "conns": 1,
                "tbytes": 1,
            }
        },
    ]
    per_host = [
        {
            "$group": {
                "_id": {
                    "ip": _ref("ip"),
                    "network_uuid": _ref("network_uuid"),
                    "network_name": _ref("network_name"),
                },
                "peers": {"$addToSet": _ref("peer")},
                **_totals(),
            }
        },
        {
            "$project": {
                "_id": 0,
                "ip": _ref("_id.ip"),
                "network_uuid": _ref("_id.network_uuid"),
                "network_name": _ref("_id.network_name"),
                "peers": 1,
                "conn_count": _ref("conns"),
                "uconn_count": _size_of("peers"),
                "total_bytes": _ref("tbytes"),
            }
        },
    ]
    return joined + per_peer + per_host + _ordering(sort, limit, no_limit)


def hostname_results(
    database, collection: str, sort: str, limit: int, no_limit: bool
) -> list[HostnameResult]:
    """Blacklisted hostnames and the hosts that connected to them."""
    cursor = database[collection].aggregate(
        hostname_results_pipeline(sort, limit, no_limit), allowDiskUse=True
    )
    return [HostnameResult.from_document(doc) for doc in cursor]


def _ip_results(
    database, collection: str, sort: str, limit: int, no_limit: bool, source: bool
) -> list[IPResult]:
    cursor = database[collection].aggregate(
        ip_results_pipeline(sort, limit, no_limit, source), allowDiskUse=True
    )
    return [IPResult.from_document(doc) for doc in cursor]


def src_ip_results(
    database, collection: str, sort: str, limit: int, no_limit: bool
) -> list[IPResult]:
    """Blacklisted source IPs and the hosts they connected to."""
    return _ip_results(database, collection, sort, limit, no_limit, True)


def dst_ip_results(
    database, collection: str, sort: str, limit: int, no_limit: bool
) -> list[IPResult]:
    """Blacklisted destination IPs and the hosts that connected to them."""
    return _ip_results(database, collection, sort, limit, no_limit, False)