"""Blacklist peer updates: mark hosts that talked to blacklisted hosts."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pymongo.errors import PyMongoError

from .uniqueip import UniqueIP

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionPeer:
    """A host that talked to a blacklisted host, with connection and byte totals."""

    host: UniqueIP
    connections: int = 0
    total_bytes: int = 0

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> ConnectionPeer:
        return cls(
            host=UniqueIP.from_document(dict(doc["_id"])),
            connections=int(doc.get("bl_conn_count", 0)),
            total_bytes=int(doc.get("bl_total_bytes", 0)),
        )


@dataclass
class HostsUpdate:
    """An upsert against the host collection."""

    selector: dict[str, Any]
    query: dict[str, Any]


def _blacklist_update(
    chunk: int,
    blacklisted: UniqueIP,
    peer: ConnectionPeer,
    new_flag: bool,
    count_field: str,
) -> HostsUpdate:
    if new_flag:
        query = {
            "$push": {
                "dat": {
                    "bl": blacklisted.to_document(),
                    count_field: 1,
                    "bl_total_bytes": peer.total_bytes,
                    "bl_conn_count": peer.connections,
                    "cid": chunk,
                }
            }
        }
        return HostsUpdate(selector=peer.host.bson_key(), query=query)

    query = {
        "$set": {
            "dat.$.bl_conn_count": peer.connections,
            "dat.$.bl_total_bytes": peer.total_bytes,
            f"dat.$.{count_field}": 1,
            "dat.$.cid": chunk,
        }
    }
    selector = peer.host.bson_key()
    selector["dat.bl"] = blacklisted.bson_key()
    return HostsUpdate(selector=selector, query=query)


def append_blacklisted_dst_query(
    chunk: int,
    blacklisted_dst: UniqueIP,
    src_conn_data: ConnectionPeer,
    new_flag: bool,
) -> HostsUpdate:
    """Record on a source host that it contacted a blacklisted destination."""
    return _blacklist_update(chunk, blacklisted_dst, src_conn_data, new_flag, "bl_out_count")


def append_blacklisted_src_query(
    chunk: int,
    blacklisted_src: UniqueIP,
    dst_conn_data: ConnectionPeer,
    new_flag: bool,
) -> HostsUpdate:
    """Record on a destination host that a blacklisted source contacted it."""
    return _blacklist_update(chunk, blacklisted_src, dst_conn_data, new_flag, "bl_in_count")


def peers_pipeline(blacklisted_ip: UniqueIP, as_destination: bool) -> list[dict[str, Any]]:
    """Aggregation over uconn finding the peers of a blacklisted IP.

    With as_destination, the peers are the sources that contacted the IP;
    otherwise they are the destinations the IP contacted.
    """
    own, peer = ("dst", "src") if as_destination else ("src", "dst")
    return [
        {
            "$match": {
                own: blacklisted_ip.ip,
                f"{own}_network_uuid": blacklisted_ip.network_uuid,
            }
        },
        {"$unwind": "$dat"},
        {
            "$group": {
                "_id": {"ip": f"${peer}", "network_uuid": f"${peer}_network_uuid"},
                "bl_conn_count": {"$sum": "$dat.count"},
                "bl_total_bytes": {"$sum": "$dat.tbytes"},
            }
        },
    ]


def _peers(uconns, blacklisted_ip: UniqueIP, as_destination: bool) -> list[ConnectionPeer]:
    try:
        cursor = uconns.aggregate(peers_pipeline(blacklisted_ip, as_destination), allowDiskUse=True)
        return [ConnectionPeer.from_document(doc) for doc in cursor]
    except PyMongoError:
        log.exception("blacklist peer lookup failed for %s", blacklisted_ip)
        return []


def _is_new_entry(hosts, peer: ConnectionPeer, blacklisted_ip: UniqueIP) -> bool:
    selector = peer.host.bson_key()
    selector["dat.bl"] = blacklisted_ip.bson_key()
    try:
        return hosts.find_one(selector) is None
    except PyMongoError:
        return True


def _write(hosts, update: HostsUpdate) -> bool:
    try:
        result = hosts.update_one(update.selector, update.query, upsert=True)
    except PyMongoError:
        log.exception("bl updater upsert failed: %s", update)
        return False
    if (
        result.modified_count == 0
        and result.upserted_id is None
        and result.matched_count == 0
    ):
        log.error("bl updater upsert changed nothing: %s", update)
    return True


def update_blacklisted_peers(
    database, host_collection: str, uconn_collection: str, chunk: int
) -> int:
    """Mark every peer of each blacklisted host; returns the number of upserts written."""
    hosts = database[host_collection]
    uconns = database[uconn_collection]
    written = 0

    print("\t[-] Updating blacklisted peers ...")
    blacklisted_hosts = [UniqueIP.from_document(doc) for doc in hosts.find({"blacklisted": True})]

    for blacklisted_ip in blacklisted_hosts:
        dst_peers = _peers(uconns, blacklisted_ip, as_destination=True)
        src_peers = _peers(uconns, blacklisted_ip, as_destination=False)

        for peer in dst_peers:
            new_flag = _is_new_entry(hosts, peer, blacklisted_ip)
            if _write(hosts, append_blacklisted_dst_query(chunk, blacklisted_ip, peer, new_flag)):
                written += 1
        for peer in src_peers:
            new_flag = _is_new_entry(hosts, peer, blacklisted_ip)
            if _write(hosts, append_blacklisted_src_query(chunk, blacklisted_ip, peer, new_flag)):
                written += 1
    return written


def create_indexes(collection) -> None:
    """Ensure the index used to find hosts that contacted blacklisted hosts."""
    collection.create_index([("dat.bl.ip", 1), ("dat.bl.network_uuid", 1)])