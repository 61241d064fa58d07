"""Certificate collection updates: hosts presenting invalid certificates."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pymongo.errors import PyMongoError

from .uniqueip import UniqueIP, UniqueIPSet

log = logging.getLogger(__name__)

# caps keep documents well under the database's size limit
_MAX_ORIG_IPS = 200003
_MAX_TUPLES = 20
_MAX_INVALID_CERTS = 10


@dataclass
class CertificateInput:
    """A host with invalid certificates and the clients that connected to it."""

    host: UniqueIP
    seen: int = 0
    orig_ips: UniqueIPSet = field(default_factory=UniqueIPSet)
    invalid_certs: list[str] = field(default_factory=list)
    tuples: list[str] = field(default_factory=list)


@dataclass
class Update:
    """An upsert against a named collection."""

    selector: dict[str, Any]
    query: dict[str, Any]
    collection: str


def _ip_documents(ips: Iterable[UniqueIP], limit: int) -> list[dict[str, Any]]:
    return [ip.to_document() for ip in list(ips)[:limit]]


def build_certificate_update(chunk: int, collection: str, datum: CertificateInput) -> Update:
    """The upsert recording a host's invalid certificates for this chunk."""
    query = {
        "$push": {
            "dat": {
                "seen": datum.seen,
                "orig_ips": _ip_documents(datum.orig_ips, _MAX_ORIG_IPS),
                "tuples": list(datum.tuples[:_MAX_TUPLES]),
                "icodes": list(datum.invalid_certs[:_MAX_INVALID_CERTS]),
                "cid": chunk,
            }
        },
        "$set": {"cid": chunk, "network_name": datum.host.network_name},
    }
    return Update(selector=datum.host.bson_key(), query=query, collection=collection)


def upsert_certificates(
    database, collection: str, chunk: int, cert_map: Mapping[str, CertificateInput]
) -> int:
    """Upsert every certificate record; returns how many were written."""
    written = 0
    print("\t[-] Invalid Cert Analysis:")
    for datum in cert_map.values():
        update = build_certificate_update(chunk, collection, datum)
        try:
            result = database[update.collection].update_one(
                update.selector, update.query, upsert=True
            )
        except PyMongoError:
            log.exception("cert upsert failed: %s", update)
            continue
        if result.modified_count == 0 and result.upserted_id is None:
            log.error("cert upsert changed nothing: %s", update)
        written += 1
    return written