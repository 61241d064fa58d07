"""Host collection updates: per-host connection counts, DNS statistics and flags."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pymongo.errors import PyMongoError

from .uniqueip import UniqueIP

log = logging.getLogger(__name__)


@dataclass
class HostInput:
    """Aggregated data about one host in the current import."""

    host: UniqueIP
    is_local: bool = False
    count_src: int = 0
    count_dst: int = 0
    connection_count: int = 0
    total_bytes: int = 0
    max_duration: float = 0.0
    total_duration: float = 0.0
    dns_query_count: dict[str, int] = field(default_factory=dict)
    untrusted_app_conn_count: int = 0
    max_ts: int = 0
    min_ts: int = 0
    ip4: bool = False
    ip4_bin: int = 0


@dataclass(frozen=True)
class ExplodedDNS:
    """A domain queried by a host and how many times."""

    query: str = ""
    count: int = 0

    def to_document(self) -> dict[str, Any]:
        return {"query": self.query, "count": self.count}

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> ExplodedDNS:
        return cls(query=doc.get("query", ""), count=int(doc.get("count", 0)))


@dataclass
class Update:
    """An upsert: a selector and an update document."""

    selector: dict[str, Any]
    query: dict[str, Any]


def build_exploded_dns_array(dns_query_counts: Mapping[str, int]) -> list[ExplodedDNS]:
    """Count how many of the queried names each parent domain appears under.

    The last label of every name is left out, as it is all or part of the
    top level domain.
    """
    counts: dict[str, int] = {}
    for name in dns_query_counts:
        labels = name.split(".")
        last = len(labels) - 1
        for depth in range(1, last + 1):
            entry = ".".join(labels[last - depth:])
            counts[entry] = counts.get(entry, 0) + 1
    return [ExplodedDNS(query, count) for query, count in counts.items()]


def max_dns_query_count_query(host: UniqueIP) -> list[dict[str, Any]]:
    """Aggregation finding the host's most often queried exploded domain."""
    return [
        {"$match": {"ip": host.ip, "network_uuid": host.network_uuid}},
        {"$unwind": "$dat"},
        {"$unwind": "$dat.exploded_dns"},
        {"$project": {"exploded_dns": "$dat.exploded_dns"}},
        {
            "$group": {
                "_id": "$exploded_dns.query",
                "query": {"$first": "$exploded_dns.query"},
                "count": {"$sum": "$exploded_dns.count"},
            }
        },
        {"$project": {"_id": 0, "query": 1, "count": 1}},
        {"$sort": {"count": -1}},
        {"$limit": 1},
    ]


def standard_query(
    chunk: int,
    ip: UniqueIP,
    local: bool,
    ip4: bool,
    ip4bin: int,
    max_dns: ExplodedDNS,
    untrusted_acc: int,
    count_src: int,
    count_dst: int,
    blacklisted: bool,
    new_flag: bool,
) -> Update:
    """The main upsert for a host in the current chunk."""
    query: dict[str, Any] = {
        "$set": {
            "blacklisted": blacklisted,
            "cid": chunk,
            "local": local,
            "ipv4": ip4,
            "ipv4_binary": ip4bin,
            "network_name": ip.network_name,
        }
    }
    max_dns_entry = {"max_dns": max_dns.to_document(), "cid": chunk}

    if new_flag:
        query["$push"] = {
            "dat": {
                "$each": [
                    {
                        "count_src": count_src,
                        "count_dst": count_dst,
                        "upps_count": untrusted_acc,
                        "cid": chunk,
                    },
                    max_dns_entry,
                ]
            }
        }
        return Update(selector=ip.bson_key(), query=query)

    query["$inc"] = {
        "dat.$.count_src": count_src,
        "dat.$.count_dst": count_dst,
        "dat.$.upps_count": untrusted_acc,
    }
    query["$push"] = {"dat": max_dns_entry}
    selector = ip.bson_key()
    selector["dat.cid"] = chunk
    return Update(selector=selector, query=query)


def exploded_dns_entries_update(
    chunk: int, host: UniqueIP, entries: list[ExplodedDNS], new_record: bool
) -> Update:
    """The upsert pushing this chunk's exploded DNS entries into a host record."""
    selector = host.bson_key()
    if not new_record:
        selector["dat.cid"] = chunk
    query = {
        "$push": {
            "dat": {
                "exploded_dns": [entry.to_document() for entry in entries],
                "cid": chunk,
            }
        }
    }
    return Update(selector=selector, query=query)


def create_indexes(collection) -> None:
    """Ensure the indexes the host collection needs."""
    collection.create_index([("ip", 1)])
    collection.create_index([("ip", 1), ("network_uuid", 1)], unique=True)
    collection.create_index([("local", 1)])
    collection.create_index([("ipv4_binary", 1)])


def _should_insert_new_host_record(collection, host: UniqueIP, chunk: int) -> bool:
    existing = collection.find_one(host.bson_key())
    return existing is None or existing.get("cid", 0) != chunk


def _upsert(collection, update: Update) -> bool:
    try:
        result = collection.update_one(update.selector, update.query, upsert=True)
    except PyMongoError:
        log.exception("host upsert failed: %s", update)
        return False
    if result.modified_count == 0 and result.upserted_id is None:
        log.error("host upsert changed nothing: %s", update)
    return True


def _max_dns_query(collection, host: UniqueIP) -> ExplodedDNS:
    pipeline = max_dns_query_count_query(host)
    try:
        doc = next(iter(collection.aggregate(pipeline, allowDiskUse=True)), None)
    except PyMongoError:
        log.exception("max dns query failed: %s", pipeline)
        return ExplodedDNS()
    return ExplodedDNS() if doc is None else ExplodedDNS.from_document(doc)


def upsert_hosts(
    database,
    host_collection: str,
    blacklist_database,
    chunk: int,
    host_map: Mapping[str, HostInput],
) -> int:
    """Upsert every IPv4 host into the host collection; returns how many were written."""
    target = database[host_collection]
    blacklist = blacklist_database["ip"]
    written = 0

    print("\t[-] Host Analysis:")
    for datum in host_map.values():
        blacklisted = blacklist.count_documents({"index": datum.host.ip}) > 0
        if not datum.ip4:
            continue

        new_record = _should_insert_new_host_record(target, datum.host, chunk)

        max_dns = ExplodedDNS()
        if datum.dns_query_count:
            entries = build_exploded_dns_array(datum.dns_query_count)
            _upsert(target, exploded_dns_entries_update(chunk, datum.host, entries, new_record))
            max_dns = _max_dns_query(target, datum.host)

        update = standard_query(
            chunk,
            datum.host,
            datum.is_local,
            datum.ip4,
            datum.ip4_bin,
            max_dns,
            datum.untrusted_app_conn_count,
            datum.count_src,
            datum.count_dst,
            blacklisted,
            new_record,
        )
        if _upsert(target, update):
            written += 1
    return written