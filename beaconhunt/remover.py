"""Removal of one chunk's data from the analysis collections."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from pymongo.errors import PyMongoError

from .explodeddns import exploded_domains

log = logging.getLogger(__name__)


class RemovalError(RuntimeError):
    """Removing a chunk from the database failed."""


@dataclass
class Update:
    """An update to apply to a named collection."""

    selector: dict[str, Any]
    query: dict[str, Any]
    collection: str


def reduce_dns_sub_count_updates(name: str, collection: str) -> list[Update]:
    """Updates lowering the subdomain count of each parent domain of name."""
    return [
        Update(
            selector={"domain": entry},
            query={"$inc": {"subdomain_count": -1}},
            collection=collection,
        )
        for entry in exploded_domains(name)
    ]


def _reduce_dns_sub_count(
    database, cid: int, hostnames_collection: str, exploded_collection: str
) -> None:
    for doc in database[hostnames_collection].find({"cid": cid}):
        for update in reduce_dns_sub_count_updates(doc.get("host", ""), exploded_collection):
            try:
                result = database[update.collection].update_one(update.selector, update.query)
            except PyMongoError:
                log.exception("subdomain count update failed: %s", update)
                continue
            if result.matched_count == 0:
                log.error("subdomain count update matched nothing: %s", update)


def _remove_outdated_cids(database, cid: int, collections: Iterable[str]) -> None:
    for name in collections:
        coll = database[name]
        # whole records not updated since the chunk go entirely
        try:
            coll.delete_many({"cid": cid})
        except PyMongoError:
            log.exception("failed to delete whole documents from %s", name)
        # records updated since only lose that chunk's entries
        try:
            coll.update_many({"dat.cid": cid}, {"$pull": {"dat": {"cid": cid}}})
        except PyMongoError:
            log.exception("failed to delete chunk from %s", name)


def remove_chunk(
    database,
    cid: int,
    collections: Iterable[str],
    hostnames_collection: str,
    exploded_collection: str,
) -> None:
    """Remove chunk cid from the given collections.

    Subdomain counts in the exploded DNS collection are lowered first, using
    the hostnames recorded in the chunk.
    """
    print("\t[-] Removing matching chunk: ", cid)
    try:
        _reduce_dns_sub_count(database, cid, hostnames_collection, exploded_collection)
    except PyMongoError as exc:
        raise RemovalError(
            f"Failed to update exploded dns collection for removal: {exc}"
        ) from exc
    try:
        _remove_outdated_cids(database, cid, collections)
    except PyMongoError as exc:
        raise RemovalError("Failed to remove outdated documents from database") from exc