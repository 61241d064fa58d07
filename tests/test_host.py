from dataclasses import dataclass
from typing import Any

import pytest

from beaconhunt.host import (
    ExplodedDNS,
    HostInput,
    build_exploded_dns_array,
    create_indexes,
    exploded_dns_entries_update,
    max_dns_query_count_query,
    standard_query,
    upsert_hosts,
)
from beaconhunt.netutil import PUBLIC_NETWORK_NAME, PUBLIC_NETWORK_UUID
from beaconhunt.uniqueip import UniqueIP

HOST = UniqueIP("1.2.3.4", PUBLIC_NETWORK_UUID, PUBLIC_NETWORK_NAME)


@dataclass
class FakeResult:
    modified_count: int = 1
    upserted_id: Any = None


class FakeCollection:
    def __init__(self, count=0, existing=None, aggregate_docs=()):
        self.count = count
        self.existing = existing
        self.aggregate_docs = list(aggregate_docs)
        self.updates = []
        self.indexes = []
        self.pipelines = []

    def count_documents(self, selector):
        return self.count

    def find_one(self, selector):
        return self.existing

    def update_one(self, selector, query, upsert=False):
        self.updates.append((selector, query, upsert))
        return FakeResult()

    def aggregate(self, pipeline, allowDiskUse=False):
        self.pipelines.append(pipeline)
        return iter(self.aggregate_docs)

    def create_index(self, keys, unique=False):
        self.indexes.append((keys, unique))


class FakeDatabase(dict):
    pass


def test_build_exploded_dns_array_counts_parents():
    entries = build_exploded_dns_array({"a.b.example.com": 5, "c.example.com": 2})
    counts = {e.query: e.count for e in entries}
    assert counts == {
        "example.com": 2,
        "b.example.com": 1,
        "a.b.example.com": 1,
        "c.example.com": 1,
    }


def test_build_exploded_dns_array_single_label_is_excluded():
    assert build_exploded_dns_array({"localhost": 3}) == []


def test_max_dns_query_count_query_shape():
    pipeline = max_dns_query_count_query(HOST)
    assert pipeline[0] == {"$match": {"ip": "1.2.3.4", "network_uuid": PUBLIC_NETWORK_UUID}}
    assert pipeline[-1] == {"$limit": 1}
    assert pipeline[-2] == {"$sort": {"count": -1}}


def test_standard_query_new_record():
    max_dns = ExplodedDNS("example.com", 4)
    update = standard_query(3, HOST, True, True, 16909060, max_dns, 1, 2, 5, False, True)
    assert update.selector == HOST.bson_key()
    each = update.query["$push"]["dat"]["$each"]
    assert each[0] == {"count_src": 2, "count_dst": 5, "upps_count": 1, "cid": 3}
    assert each[1] == {"max_dns": {"query": "example.com", "count": 4}, "cid": 3}
    assert update.query["$set"]["network_name"] == PUBLIC_NETWORK_NAME
    assert "$inc" not in update.query


def test_standard_query_existing_record():
    update = standard_query(3, HOST, False, True, 0, ExplodedDNS(), 1, 2, 5, True, False)
    assert update.selector["dat.cid"] == 3
    assert update.query["$inc"] == {
        "dat.$.count_src": 2,
        "dat.$.count_dst": 5,
        "dat.$.upps_count": 1,
    }
    assert update.query["$push"] == {"dat": {"max_dns": {"query": "", "count": 0}, "cid": 3}}
    assert update.query["$set"]["blacklisted"] is True


@pytest.mark.parametrize("new_record,has_cid", [(True, False), (False, True)])
def test_exploded_dns_entries_update_selector(new_record, has_cid):
    entries = [ExplodedDNS("example.com", 1)]
    update = exploded_dns_entries_update(7, HOST, entries, new_record)
    assert ("dat.cid" in update.selector) is has_cid
    assert update.query["$push"]["dat"] == {
        "exploded_dns": [{"query": "example.com", "count": 1}],
        "cid": 7,
    }


def test_create_indexes():
    coll = FakeCollection()
    create_indexes(coll)
    assert ([("ip", 1), ("network_uuid", 1)], True) in coll.indexes
    assert len(coll.indexes) == 4


def test_upsert_hosts_skips_non_ipv4():
    hosts = FakeCollection()
    db = FakeDatabase(host=hosts)
    bl = FakeDatabase(ip=FakeCollection())
    written = upsert_hosts(db, "host", bl, 1, {"x": HostInput(host=HOST, ip4=False)})
    assert written == 0
    assert hosts.updates == []


def test_upsert_hosts_new_blacklisted_host():
    hosts = FakeCollection(existing=None)
    db = FakeDatabase(host=hosts)
    bl = FakeDatabase(ip=FakeCollection(count=1))
    written = upsert_hosts(db, "host", bl, 2, {"x": HostInput(host=HOST, ip4=True)})
    assert written == 1
    selector, query, upsert = hosts.updates[0]
    assert upsert is True
    assert selector == HOST.bson_key()
    assert query["$set"]["blacklisted"] is True
    assert "$each" in query["$push"]["dat"]


def test_upsert_hosts_with_dns_uses_max_query():
    hosts = FakeCollection(
        existing={"cid": 2}, aggregate_docs=[{"query": "example.com", "count": 9}]
    )
    db = FakeDatabase(host=hosts)
    bl = FakeDatabase(ip=FakeCollection(count=0))
    datum = HostInput(host=HOST, ip4=True, dns_query_count={"a.example.com": 1})
    written = upsert_hosts(db, "host", bl, 2, {"x": datum})
    assert written == 1
    assert len(hosts.updates) == 2
    dns_selector, dns_query, _ = hosts.updates[0]
    assert dns_selector["dat.cid"] == 2
    _, main_query, _ = hosts.updates[1]
    assert main_query["$push"]["dat"]["max_dns"] == {"query": "example.com", "count": 9}
    assert main_query["$set"]["blacklisted"] is False
    assert hosts.pipelines[0] == max_dns_query_count_query(HOST)