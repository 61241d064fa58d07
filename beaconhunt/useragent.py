"""User agent collection: how often each user agent or JA3 hash was seen."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from pymongo.errors import PyMongoError

from .uniqueip import UniqueIP, UniqueIPSet

log = logging.getLogger(__name__)

_MAX_KEY_LENGTH = 1024
_TRUNCATED_KEY_LENGTH = 800
_MAX_ORIG_IPS = 10
_MAX_REQUESTS = 10
_RARE_SIGNATURE_HOSTS = 5


@dataclass
class UserAgentInput:
    """A user agent (or JA3 hash) with the clients that used it."""

    name: str
    seen: int = 0
    orig_ips: UniqueIPSet = field(default_factory=UniqueIPSet)
    requests: list[str] = field(default_factory=list)
    ja3: bool = False


@dataclass(frozen=True)
class UserAgentResult:
    """A user agent and how many times it was seen."""

    user_agent: str
    times_used: int

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> UserAgentResult:
        return cls(user_agent=doc.get("user_agent", ""), times_used=int(doc.get("seen", 0)))


@dataclass
class Update:
    """An upsert against a named collection."""

    selector: dict[str, Any]
    query: dict[str, Any]
    collection: str = ""


def host_query(chunk: int, useragent: str, ip: UniqueIP, new_flag: bool) -> Update:
    """The host update flagging that ip used a rarely seen signature."""
    if new_flag:
        query = {"$push": {"dat": {"rsig": useragent, "rsigc": 1, "cid": chunk}}}
        return Update(selector=ip.bson_key(), query=query)

    # an existing entry is moved to the current chunk rather than duplicated
    query = {"$set": {"dat.$.rsigc": 1, "dat.$.cid": chunk}}
    selector = ip.bson_key()
    selector["dat.rsig"] = useragent
    return Update(selector=selector, query=query)


def build_useragent_update(chunk: int, collection: str, datum: UserAgentInput) -> Update:
    """The upsert recording this chunk's uses of a user agent."""
    query = {
        "$push": {
            "dat": {
                "seen": datum.seen,
                "orig_ips": [ip.to_document() for ip in list(datum.orig_ips)[:_MAX_ORIG_IPS]],
                "hosts": list(datum.requests[:_MAX_REQUESTS]),
                "cid": chunk,
            }
        },
        "$set": {"cid": chunk},
        "$setOnInsert": {"ja3": datum.ja3},
    }
    return Update(selector={"user_agent": datum.name}, query=query, collection=collection)


def rare_signature_pipeline(name: str, max_left: int) -> list[dict[str, Any]]:
    """Aggregation returning the distinct clients of name if there are at most max_left."""
    return [
        {"$match": {"user_agent": name}},
        # network_name is dropped before comparing unique IPs
        {"$project": {"dat.orig_ips.network_name": 0}},
        {"$project": {"ips": "$dat.orig_ips", "user_agent": 1}},
        {"$unwind": "$ips"},
        # ips is a list of lists, so it is unwound twice
        {"$unwind": "$ips"},
        {"$group": {"_id": "$user_agent", "ips": {"$addToSet": "$ips"}}},
        {
            "$project": {
                "count": {"$size": {"$ifNull": ["$ips", []]}},
                "ips": "$ips",
            }
        },
        {"$match": {"count": {"$lte": max_left}}},
    ]


def _write(collection, update: Update) -> bool:
    try:
        result = collection.update_one(update.selector, update.query, upsert=True)
    except PyMongoError:
        log.exception("useragent upsert failed: %s", update)
        return False
    if result.modified_count == 0 and result.upserted_id is None:
        log.error("useragent upsert changed nothing: %s", update)
    return True


def _rare_signature_ips(useragents, name: str, max_left: int) -> list[UniqueIP]:
    try:
        cursor = useragents.aggregate(rare_signature_pipeline(name, max_left), allowDiskUse=True)
        doc = next(iter(cursor), None)
    except PyMongoError:
        log.exception("rare signature lookup failed for %s", name)
        return []
    if doc is None:
        return []
    return [UniqueIP.from_document(dict(ip)) for ip in doc.get("ips") or []]


def _rare_signature_updates(
    useragents, hosts, host_collection: str, chunk: int, datum: UserAgentInput
) -> list[Update]:
    max_left = _RARE_SIGNATURE_HOSTS - len(datum.orig_ips)
    updates = []
    for ip in _rare_signature_ips(useragents, datum.name, max_left):
        selector = ip.bson_key()
        selector["dat.rsig"] = datum.name
        try:
            existing = hosts.find_one(selector)
        except PyMongoError:
            existing = None
        new_flag = existing is None or existing.get("cid", 0) != chunk
        update = host_query(chunk, datum.name, ip, new_flag)
        update.collection = host_collection
        updates.append(update)
    return updates


def upsert_user_agents(
    database,
    useragent_collection: str,
    host_collection: str,
    chunk: int,
    useragent_map: Mapping[str, UserAgentInput],
) -> int:
    """Record every user agent and flag hosts using rare ones.

    Returns the number of user agent upserts written.
    """
    useragents = database[useragent_collection]
    hosts = database[host_collection]
    written = 0

    print("\t[-] UserAgent Analysis:")
    for datum in useragent_map.values():
        # index keys are limited in size, so cut very long names back
        if len(datum.name) > _MAX_KEY_LENGTH:
            datum = replace(datum, name=datum.name[:_TRUNCATED_KEY_LENGTH])

        if _write(useragents, build_useragent_update(chunk, useragent_collection, datum)):
            written += 1

        if len(datum.orig_ips) < _RARE_SIGNATURE_HOSTS:
            for update in _rare_signature_updates(
                useragents, hosts, host_collection, chunk, datum
            ):
                _write(database[update.collection], update)
    return written


def results_pipeline(sort_direction: int, limit: int, no_limit: bool) -> list[dict[str, Any]]:
    """Aggregation summing sightings per user agent, sorted by sort_direction."""
    pipeline: list[dict[str, Any]] = [
        {"$project": {"user_agent": 1, "seen": "$dat.seen"}},
        {"$unwind": "$seen"},
        {"$group": {"_id": "$user_agent", "seen": {"$sum": "$seen"}}},
        {"$project": {"_id": 0, "user_agent": "$_id", "seen": 1}},
        {"$sort": {"seen": sort_direction}},
    ]
    if not no_limit:
        pipeline.append({"$limit": limit})
    return pipeline


def results(
    database, collection: str, sort_direction: int, limit: int, no_limit: bool
) -> list[UserAgentResult]:
    """User agents with how many times each was seen.

    sort_direction is -1 for descending, 1 for ascending.
    """
    cursor = database[collection].aggregate(
        results_pipeline(sort_direction, limit, no_limit), allowDiskUse=True
    )
    return [UserAgentResult.from_document(doc) for doc in cursor]