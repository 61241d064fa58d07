"""Hostname collection updates: resolved and client IPs per hostname."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from .uniqueip import UniqueIPSet

log = logging.getLogger(__name__)

_MAX_KEY_LENGTH = 1024
_TRUNCATED_KEY_LENGTH = 800


@dataclass
class HostnameInput:
    """A hostname with the IPs it resolved to and the clients that asked."""

    host: str
    resolved_ips: UniqueIPSet = field(default_factory=UniqueIPSet)
    client_ips: UniqueIPSet = field(default_factory=UniqueIPSet)


@dataclass
class Update:
    """An upsert: a selector and an update document."""

    selector: dict[str, Any]
    query: dict[str, Any]


def build_hostname_update(chunk: int, datum: HostnameInput, blacklisted: bool) -> Update | None:
    """The upsert for one hostname, or None for names that are skipped."""
    if not datum.host or datum.host.endswith("in-addr.arpa"):
        return None

    set_fields: dict[str, Any] = {"cid": chunk}
    if blacklisted:
        set_fields = {"blacklisted": True, "cid": chunk}

    query = {
        "$push": {
            "dat": {
                "ips": datum.resolved_ips.documents(),
                "src_ips": datum.client_ips.documents(),
                "cid": chunk,
            }
        },
        "$set": set_fields,
    }
    return Update(selector={"host": datum.host}, query=query)


def upsert_hostnames(
    database,
    blacklist_database,
    collection: str,
    chunk: int,
    inputs: Mapping[str, HostnameInput],
) -> int:
    """Upsert every hostname into the collection; returns how many were written."""
    target = database[collection]
    blacklist = blacklist_database["hostname"]
    written = 0

    for entry in inputs.values():
        # index keys are limited in size, so cut very long names back
        if len(entry.host) > _MAX_KEY_LENGTH:
            entry = replace(entry, host=entry.host[:_TRUNCATED_KEY_LENGTH])
        if not entry.host or entry.host.endswith("in-addr.arpa"):
            continue

        blacklisted = blacklist.count_documents({"index": entry.host}) > 0
        update = build_hostname_update(chunk, entry, blacklisted)
        if update is None:
            continue

        try:
            result = target.update_one(update.selector, update.query, upsert=True)
        except Exception:
            log.exception("hostname upsert failed: %s", update)
            continue
        if result.modified_count == 0 and result.upserted_id is None:
            log.error("hostname upsert changed nothing: %s", update)
        written += 1

    return written