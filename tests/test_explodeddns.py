from collections import defaultdict

import pytest

from beaconhunt.explodeddns import (
    ExplodedDNSResult,
    Update,
    analyze_domain,
    build_update,
    create_indexes,
    exploded_domains,
    results,
    results_pipeline,
    upsert_exploded_dns,
)


class FakeResult:
    def __init__(self, matched, modified, upserted_id):
        self.matched_count = matched
        self.modified_count = modified
        self.upserted_id = upserted_id


def _matches(doc, flt):
    for key, value in flt.items():
        if "." in key:
            head, tail = key.split(".", 1)
            if not any(isinstance(e, dict) and e.get(tail) == value for e in doc.get(head, [])):
                return False
        elif doc.get(key) != value:
            return False
    return True


def _position(doc, flt):
    for key, value in flt.items():
        if "." in key:
            head, tail = key.split(".", 1)
            for i, e in enumerate(doc.get(head, [])):
                if e.get(tail) == value:
                    return i
    return None


def _apply(doc, query, pos):
    for op, fields in query.items():
        for key, value in fields.items():
            parts = key.split(".")
            target = doc
            for part in parts[:-1]:
                target = target[pos] if part == "$" else target.setdefault(part, {})
            last = parts[-1]
            if op == "$set":
                target[last] = value
            elif op == "$inc":
                target[last] = target.get(last, 0) + value
            elif op == "$push":
                target.setdefault(last, []).append(value)


class FakeCollection:
    def __init__(self):
        self.docs = []
        self.indexes = []
        self.pipelines = []
        self.canned = []

    def find_one(self, flt):
        return next((d for d in self.docs if _matches(d, flt)), None)

    def update_one(self, selector, query, upsert=False):
        for doc in self.docs:
            if _matches(doc, selector):
                _apply(doc, query, _position(doc, selector))
                return FakeResult(1, 1, None)
        if upsert:
            doc = {k: v for k, v in selector.items() if "." not in k}
            _apply(doc, query, None)
            self.docs.append(doc)
            return FakeResult(0, 0, len(self.docs))
        return FakeResult(0, 0, None)

    def create_index(self, keys, unique=False):
        self.indexes.append((keys, unique))

    def aggregate(self, pipeline, allowDiskUse=False):
        self.pipelines.append((pipeline, allowDiskUse))
        return iter(self.canned)


class FakeDatabase:
    def __init__(self):
        self.collections = defaultdict(FakeCollection)
        self.created = []

    def __getitem__(self, name):
        return self.collections[name]

    def list_collection_names(self):
        return list(self.collections)

    def create_collection(self, name):
        self.created.append(name)
        return self.collections[name]


def _doc(db, domain):
    return db["explodedDns"].find_one({"domain": domain})


def test_exploded_domains_parents_shortest_first():
    assert exploded_domains("a.b.example.com") == ["example.com", "b.example.com", "a.b.example.com"]


def test_exploded_domains_single_label_is_empty():
    assert exploded_domains("com") == []


def test_exploded_domains_stops_at_reverse_lookup_zone():
    assert exploded_domains("1.2.in-addr.arpa") == []


def test_build_update_new_domain():
    update = build_update(4, "example.com", 9, None, False)
    assert update.selector == {"domain": "example.com"}
    assert update.query == {
        "$push": {"dat": {"visited": 9, "cid": 4}},
        "$set": {"cid": 4},
        "$inc": {"subdomain_count": 1},
    }


def test_build_update_same_chunk_already_counted():
    update = build_update(4, "example.com", 9, 4, True)
    assert update.selector == {"domain": "example.com", "dat.cid": 4}
    assert update.query == {"$inc": {"dat.$.visited": 9}}


def test_build_update_same_chunk_not_counted():
    update = build_update(4, "example.com", 9, 4, False)
    assert update.query == {"$inc": {"subdomain_count": 1, "dat.$.visited": 9}}


def test_build_update_outdated_chunk():
    counted = build_update(4, "example.com", 9, 2, True)
    assert counted.selector == {"domain": "example.com"}
    assert "$inc" not in counted.query
    assert counted.query["$push"] == {"dat": {"visited": 9, "cid": 4}}
    fresh = build_update(4, "example.com", 9, 2, False)
    assert fresh.query["$inc"] == {"subdomain_count": 1}
    assert fresh.query["$set"] == {"cid": 4}


def test_analyze_domain_uses_existing_records():
    db = FakeDatabase()
    db["explodedDns"].docs.append({"domain": "example.com", "cid": 1, "dat": [{"cid": 1}]})
    db["hostnames"].docs.append({"host": "a.example.com"})
    updates = analyze_domain(db, "hostnames", "explodedDns", 1, "a.example.com", 3)
    assert [u.selector for u in updates] == [
        {"domain": "example.com", "dat.cid": 1},
        {"domain": "a.example.com"},
    ]
    assert updates[0].query == {"$inc": {"dat.$.visited": 3}}
    assert all(isinstance(u, Update) for u in updates)


def test_upsert_creates_then_increments():
    db = FakeDatabase()
    upsert_exploded_dns(db, "hostnames", "explodedDns", 1, {"a.example.com": 2})
    parent = _doc(db, "example.com")
    assert parent["subdomain_count"] == 1
    assert parent["dat"] == [{"visited": 2, "cid": 1}]
    assert _doc(db, "a.example.com")["cid"] == 1

    db["hostnames"].docs.append({"host": "a.example.com"})
    upsert_exploded_dns(db, "hostnames", "explodedDns", 1, {"a.example.com": 5})
    parent = _doc(db, "example.com")
    assert parent["subdomain_count"] == 1
    assert parent["dat"][0]["visited"] == 7


def test_upsert_new_chunk_pushes_entry():
    db = FakeDatabase()
    upsert_exploded_dns(db, "hostnames", "explodedDns", 1, {"a.example.com": 2})
    upsert_exploded_dns(db, "hostnames", "explodedDns", 2, {"b.example.com": 4})
    parent = _doc(db, "example.com")
    assert parent["subdomain_count"] == 2
    assert parent["cid"] == 2
    assert [entry["cid"] for entry in parent["dat"]] == [1, 2]


def test_upsert_truncates_long_names():
    db = FakeDatabase()
    upsert_exploded_dns(db, "hostnames", "explodedDns", 1, {"a." * 600 + "com": 1})
    stored = db["explodedDns"].docs
    assert stored
    assert all(len(doc["domain"]) <= 800 for doc in stored)


def test_create_indexes_only_for_new_collection():
    db = FakeDatabase()
    assert create_indexes(db, "explodedDns") is True
    assert db["explodedDns"].indexes == [([("domain", 1)], True), ([("subdomain_count", 1)], False)]
    assert create_indexes(db, "explodedDns") is False
    assert db.created == ["explodedDns"]


def test_results_pipeline_limit():
    limited = results_pipeline(1000, False)
    assert limited[0] == {"$unwind": "$dat"}
    assert limited[-1] == {"$limit": 1000}
    assert limited[-2] == {"$sort": {"subdomain_count": -1}}
    assert results_pipeline(1000, True) == limited[:-1]


def test_results_maps_documents():
    db = FakeDatabase()
    db["explodedDns"].canned = [{"domain": "example.com", "subdomain_count": 3, "visited": 12}]
    found = results(db, "explodedDns", 10, False)
    assert found == [ExplodedDNSResult("example.com", 3, 12)]
    pipeline, disk = db["explodedDns"].pipelines[0]
    assert disk is True
    assert pipeline[-1] == {"$limit": 10}