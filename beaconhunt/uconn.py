"""Unique connection collection: per host-pair connection statistics."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pymongo.errors import PyMongoError

from .uniqueip import UniqueIP, UniqueIPPair

log = logging.getLogger(__name__)

_MAX_TUPLES = 5


@dataclass
class UconnInput:
    """Aggregated connection information between two hosts."""

    hosts: UniqueIPPair
    connection_count: int = 0
    is_local_src: bool = False
    is_local_dst: bool = False
    total_bytes: int = 0
    max_duration: float = 0.0
    total_duration: float = 0.0
    ts_list: list[int] = field(default_factory=list)
    orig_bytes_list: list[int] = field(default_factory=list)
    tuples: list[str] = field(default_factory=list)
    invalid_cert_flag: bool = False
    upps_flag: bool = False


@dataclass
class UpdateInfo:
    """An upsert; both parts are None when there is nothing to write."""

    selector: dict[str, Any] | None = None
    query: dict[str, Any] | None = None

    @property
    def is_empty(self) -> bool:
        return self.query is None


@dataclass
class UconnUpdate:
    """The upserts produced for one connection pair."""

    uconn: UpdateInfo = field(default_factory=UpdateInfo)
    host_max_dur: UpdateInfo = field(default_factory=UpdateInfo)


@dataclass(frozen=True)
class LongConnResult:
    """A host pair and the longest connection between them."""

    hosts: UniqueIPPair
    max_duration: float
    tuples: list[str]

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> LongConnResult:
        return cls(
            hosts=UniqueIPPair.from_document(dict(doc)),
            max_duration=float(doc.get("maxdur", 0.0)),
            tuples=list(doc.get("tuples", [])),
        )


def build_uconn_query(chunk: int, conn_limit: int, datum: UconnInput) -> UpdateInfo:
    """The upsert for a pair in the uconn collection.

    A pair with at least conn_limit connections is a strobe; its timestamps and
    byte counts are not stored.
    """
    tuples = list(datum.tuples[:_MAX_TUPLES])
    strobe = datum.connection_count >= conn_limit

    set_fields: dict[str, Any] = {
        "cid": chunk,
        "src_network_name": datum.hosts.src_network_name,
        "dst_network_name": datum.hosts.dst_network_name,
    }
    if strobe:
        set_fields = {"strobe": True, **set_fields}

    query = {
        "$set": set_fields,
        "$push": {
            "dat": {
                "count": datum.connection_count,
                "bytes": [] if strobe else list(datum.orig_bytes_list),
                "ts": [] if strobe else list(datum.ts_list),
                "tuples": tuples,
                "icerts": datum.invalid_cert_flag,
                "maxdur": datum.max_duration,
                "tbytes": datum.total_bytes,
                "tdur": datum.total_duration,
                "cid": chunk,
            }
        },
    }
    return UpdateInfo(selector=datum.hosts.bson_key(), query=query)


def _elem_match_query(local_ip: UniqueIP, match: dict[str, Any]) -> dict[str, Any]:
    selector = local_ip.bson_key()
    selector["dat"] = {"$elemMatch": match}
    return selector


def host_max_dur_update(
    host_collection,
    chunk: int,
    max_dur: float,
    local_ip: UniqueIP,
    external_ip: UniqueIP,
) -> UpdateInfo:
    """The host collection update recording the local host's longest connection."""
    exact = _elem_match_query(
        local_ip,
        {"mdip": external_ip.bson_key(), "max_duration": {"$lte": max_dur}},
    )
    if host_collection.find_one(exact) is not None:
        return UpdateInfo(
            selector=exact,
            query={"$set": {"dat.$.cid": chunk, "dat.$.max_duration": max_dur}},
        )

    lower = _elem_match_query(
        local_ip, {"cid": chunk, "max_duration": {"$lte": max_dur}}
    )
    upper = _elem_match_query(
        local_ip, {"cid": chunk, "max_duration": {"$gte": max_dur}}
    )

    if host_collection.find_one(lower) is not None:
        return UpdateInfo(
            selector=lower,
            query={
                "$set": {
                    "dat.$.max_duration": max_dur,
                    "dat.$.mdip": external_ip.to_document(),
                    "dat.$.cid": chunk,
                }
            },
        )

    if host_collection.find_one(upper) is None:
        return UpdateInfo(
            selector=local_ip.bson_key(),
            query={
                "$push": {
                    "dat": {
                        "max_duration": max_dur,
                        "mdip": external_ip.to_document(),
                        "cid": chunk,
                    }
                }
            },
        )

    # a longer connection is already recorded in this chunk
    return UpdateInfo()


def analyze(host_collection, chunk: int, conn_limit: int, datum: UconnInput) -> UconnUpdate:
    """The uconn upsert and, for local hosts, the host max-duration update."""
    update = UconnUpdate(uconn=build_uconn_query(chunk, conn_limit, datum))
    src = datum.hosts.src.unpair()
    dst = datum.hosts.dst.unpair()
    if datum.is_local_src:
        update.host_max_dur = host_max_dur_update(
            host_collection, chunk, datum.max_duration, src, dst
        )
    elif datum.is_local_dst:
        update.host_max_dur = host_max_dur_update(
            host_collection, chunk, datum.max_duration, dst, src
        )
    return update


def _write(collection, info: UpdateInfo, require_match: bool) -> bool:
    try:
        result = collection.update_one(info.selector, info.query, upsert=True)
    except PyMongoError:
        log.exception("upsert failed: %s", info)
        return False
    unchanged = result.modified_count == 0 and result.upserted_id is None
    if require_match:
        unchanged = unchanged and result.matched_count == 0
    if unchanged:
        log.error("upsert changed nothing: %s", info)
    return True


def upsert_uconns(
    database,
    uconn_collection: str,
    host_collection: str,
    chunk: int,
    conn_limit: int,
    uconn_map: Mapping[str, UconnInput],
) -> int:
    """Record every connection pair; returns how many uconn upserts were written."""
    uconns = database[uconn_collection]
    hosts = database[host_collection]
    written = 0

    print("\t[-] Uconn Analysis:")
    for datum in uconn_map.values():
        update = analyze(hosts, chunk, conn_limit, datum)
        if not update.uconn.is_empty and _write(uconns, update.uconn, False):
            written += 1
        if not update.host_max_dur.is_empty:
            _write(hosts, update.host_max_dur, True)
    return written


def create_indexes(database, collection: str) -> bool:
    """Create the collection with its indexes; False if it already existed."""
    if collection in database.list_collection_names():
        return False
    coll = database.create_collection(collection)
    coll.create_index(
        [("src", 1), ("dst", 1), ("src_network_uuid", 1), ("dst_network_uuid", 1)],
        unique=True,
    )
    coll.create_index([("src", 1), ("src_network_uuid", 1)])
    coll.create_index([("dst", 1), ("dst_network_uuid", 1)])
    coll.create_index([("dat.count", 1)])
    return True


def long_conn_pipeline(thresh: int, limit: int, no_limit: bool) -> list[dict[str, Any]]:
    """Aggregation finding pairs with a connection longer than thresh seconds."""
    pipeline: list[dict[str, Any]] = [
        {"$match": {"dat.maxdur": {"$gt": thresh}}},
        {
            "$project": {
                "src": 1,
                "src_network_uuid": 1,
                "src_network_name": 1,
                "dst": 1,
                "dst_network_uuid": 1,
                "dst_network_name": 1,
                "maxdur": "$dat.maxdur",
                "tuples": {"$ifNull": ["$dat.tuples", []]},
            }
        },
        {"$unwind": "$maxdur"},
        {"$unwind": "$tuples"},
        # tuples is a list of lists, so it is unwound twice
        {"$unwind": "$tuples"},
        {
            "$group": {
                "_id": "$_id",
                "maxdur": {"$max": "$maxdur"},
                "src": {"$first": "$src"},
                "src_network_uuid": {"$first": "$src_network_uuid"},
                "src_network_name": {"$first": "$src_network_name"},
                "dst": {"$first": "$dst"},
                "dst_network_uuid": {"$first": "$dst_network_uuid"},
                "dst_network_name": {"$first": "$dst_network_name"},
                "tuples": {"$addToSet": "$tuples"},
            }
        },
        {
            "$project": {
                "maxdur": 1,
                "src": 1,
                "src_network_uuid": 1,
                "src_network_name": 1,
                "dst": 1,
                "dst_network_uuid": 1,
                "dst_network_name": 1,
                "tuples": {"$slice": ["$tuples", _MAX_TUPLES]},
            }
        },
        {"$sort": {"maxdur": -1}},
    ]
    if not no_limit:
        pipeline.append({"$limit": limit})
    return pipeline


def long_conn_results(
    database, collection: str, thresh: int, limit: int, no_limit: bool
) -> list[LongConnResult]:
    """Long connections, longest first."""
    cursor = database[collection].aggregate(
        long_conn_pipeline(thresh, limit, no_limit), allowDiskUse=True
    )
    return [LongConnResult.from_document(doc) for doc in cursor]