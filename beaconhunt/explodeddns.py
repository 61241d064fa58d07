"""Exploded DNS collection: per-domain subdomain counts and lookup totals."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

log = logging.getLogger(__name__)

_MAX_KEY_LENGTH = 1024
_TRUNCATED_KEY_LENGTH = 800


@dataclass(frozen=True)
class ExplodedDNSResult:
    """A domain, how many subdomains it has and how often it was looked up."""

    domain: str
    subdomain_count: int
    visited: int

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> ExplodedDNSResult:
        return cls(
            domain=doc.get("domain", ""),
            subdomain_count=int(doc.get("subdomain_count", 0)),
            visited=int(doc.get("visited", 0)),
        )


@dataclass
class Update:
    """An upsert: a selector and an update document."""

    selector: dict[str, Any]
    query: dict[str, Any]


def exploded_domains(name: str) -> list[str]:
    """The parent domains of a name, shortest first, excluding the last label.

    The last label is left out as it is all or part of the top level domain.
    Stops at an empty entry or at "in-addr.arpa".
    """
    labels = name.split(".")
    last = len(labels) - 1
    entries = []
    for depth in range(1, last + 1):
        entry = ".".join(labels[last - depth:])
        if entry in ("", "in-addr.arpa"):
            break
        entries.append(entry)
    return entries


def _new_chunk_entry(chunk: int, count: int) -> dict[str, Any]:
    return {"dat": {"visited": count, "cid": chunk}}


def build_update(
    chunk: int,
    entry: str,
    count: int,
    existing_cid: int | None,
    already_counted: bool,
) -> Update:
    """The upsert for one exploded domain.

    existing_cid is the chunk of the stored record, or None if the domain is
    new. already_counted says the full name was seen in an earlier import, so
    the subdomain count must not grow again.
    """
    if existing_cid is None:
        query = {
            "$push": _new_chunk_entry(chunk, count),
            "$set": {"cid": chunk},
            "$inc": {"subdomain_count": 1},
        }
        return Update(selector={"domain": entry}, query=query)

    if existing_cid == chunk:
        if already_counted:
            query = {"$inc": {"dat.$.visited": count}}
        else:
            query = {"$inc": {"subdomain_count": 1, "dat.$.visited": count}}
        return Update(selector={"domain": entry, "dat.cid": chunk}, query=query)

    if already_counted:
        query = {
            "$set": {"cid": chunk},
            "$push": _new_chunk_entry(chunk, count),
        }
    else:
        query = {
            "$set": {"cid": chunk},
            "$inc": {"subdomain_count": 1},
            "$push": _new_chunk_entry(chunk, count),
        }
    return Update(selector={"domain": entry}, query=query)


def analyze_domain(
    database,
    hostnames_collection: str,
    exploded_collection: str,
    chunk: int,
    name: str,
    count: int,
) -> list[Update]:
    """The upserts needed to record count lookups of name."""
    already_counted = database[hostnames_collection].find_one({"host": name}) is not None
    exploded = database[exploded_collection]

    updates = []
    for entry in exploded_domains(name):
        existing = exploded.find_one({"domain": entry})
        existing_cid = None if existing is None else existing.get("cid", 0)
        updates.append(build_update(chunk, entry, count, existing_cid, already_counted))
    return updates


def upsert_exploded_dns(
    database,
    hostnames_collection: str,
    exploded_collection: str,
    chunk: int,
    domain_map: Mapping[str, int],
) -> int:
    """Record every name's lookups; returns the number of upserts written."""
    target = database[exploded_collection]
    written = 0

    print("\t[-] Exploded DNS Analysis:")
    for name, count in domain_map.items():
        # index keys are limited in size, so cut very long names back
        if len(name) > _MAX_KEY_LENGTH:
            name = name[:_TRUNCATED_KEY_LENGTH]
        for update in analyze_domain(
            database, hostnames_collection, exploded_collection, chunk, name, count
        ):
            try:
                result = target.update_one(update.selector, update.query, upsert=True)
            except Exception:
                log.exception("exploded dns upsert failed: %s", update)
                continue
            if result.modified_count == 0 and result.upserted_id is None:
                log.error("exploded dns upsert changed nothing: %s", update)
            written += 1
    return written


def create_indexes(database, collection: str) -> bool:
    """Create the collection with its indexes; False if it already existed."""
    if collection in database.list_collection_names():
        return False
    coll = database.create_collection(collection)
    coll.create_index([("domain", 1)], unique=True)
    coll.create_index([("subdomain_count", 1)])
    return True


def results_pipeline(limit: int, no_limit: bool) -> list[dict[str, Any]]:
    """Aggregation summing lookups per domain, most subdomains first."""
    pipeline: list[dict[str, Any]] = [
        {"$unwind": "$dat"},
        {"$project": {"domain": 1, "subdomain_count": 1, "visited": "$dat.visited"}},
        {
            "$group": {
                "_id": "$domain",
                "visited": {"$sum": "$visited"},
                "subdomain_count": {"$first": "$subdomain_count"},
            }
        },
        {
            "$project": {
                "_id": 0,
                "domain": "$_id",
                "visited": 1,
                "subdomain_count": 1,
            }
        },
        {"$sort": {"visited": -1}},
        {"$sort": {"subdomain_count": -1}},
    ]
    if not no_limit:
        pipeline.append({"$limit": limit})
    return pipeline


def results(database, collection: str, limit: int, no_limit: bool) -> list[ExplodedDNSResult]:
    """Domains with their subdomain and lookup statistics."""
    cursor = database[collection].aggregate(
        results_pipeline(limit, no_limit), allowDiskUse=True
    )
    return [ExplodedDNSResult.from_document(doc) for doc in cursor]