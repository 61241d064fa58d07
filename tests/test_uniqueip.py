import pytest
from bson.binary import UUID_SUBTYPE, Binary

from beaconhunt.netutil import (
    PUBLIC_NETWORK_NAME,
    PUBLIC_NETWORK_UUID,
    UNKNOWN_PRIVATE_NETWORK_NAME,
    UNKNOWN_PRIVATE_NETWORK_UUID,
)
from beaconhunt.uniqueip import (
    UniqueIP,
    UniqueIPPair,
    UniqueIPSet,
    new_unique_ip,
    new_unique_ip_pair,
)

AGENT_UUID = "ff0d0776-0cdc-4a10-b793-522bcd48a560"
AGENT_BYTES = bytes(
    [0xFF, 0x0D, 0x07, 0x76, 0x0C, 0xDC, 0x4A, 0x10,
     0xB7, 0x93, 0x52, 0x2B, 0xCD, 0x48, 0xA5, 0x60]
)


def test_private_ip_with_valid_data():
    ip = new_unique_ip("192.168.1.1", AGENT_UUID, "test")
    assert ip.ip == "192.168.1.1"
    assert ip.network_uuid.subtype == UUID_SUBTYPE
    assert bytes(ip.network_uuid) == AGENT_BYTES
    assert ip.network_name == "test"


@pytest.mark.parametrize("agent_uuid, agent_name", [("", ""), ("invalid-uuid-here", "test")])
def test_private_ip_with_bad_data(agent_uuid, agent_name):
    ip = new_unique_ip("192.168.1.1", agent_uuid, agent_name)
    assert ip.ip == "192.168.1.1"
    assert ip.network_uuid.subtype == UNKNOWN_PRIVATE_NETWORK_UUID.subtype
    assert bytes(ip.network_uuid) == bytes(UNKNOWN_PRIVATE_NETWORK_UUID)
    assert ip.network_name == UNKNOWN_PRIVATE_NETWORK_NAME


@pytest.mark.parametrize(
    "agent_uuid, agent_name",
    [("", ""), ("invalid-uuid-here", "test"), (AGENT_UUID, "test")],
)
def test_public_ip(agent_uuid, agent_name):
    ip = new_unique_ip("8.8.8.8", agent_uuid, agent_name)
    assert ip.ip == "8.8.8.8"
    assert ip.network_uuid.subtype == PUBLIC_NETWORK_UUID.subtype
    assert bytes(ip.network_uuid) == bytes(PUBLIC_NETWORK_UUID)
    assert ip.network_name == PUBLIC_NETWORK_NAME


def test_invalid_ip_raises():
    with pytest.raises(ValueError):
        new_unique_ip("a.b.c.d", AGENT_UUID, "test")


def test_same_host_ignores_name():
    a = UniqueIP("10.0.0.1", UNKNOWN_PRIVATE_NETWORK_UUID, "one")
    b = UniqueIP("10.0.0.1", UNKNOWN_PRIVATE_NETWORK_UUID, "two")
    c = UniqueIP("10.0.0.1", PUBLIC_NETWORK_UUID, "one")
    assert a.same_host(b) is True
    assert a == b
    assert a.same_host(c) is False
    assert a.map_key() == b.map_key()
    assert a.map_key() != c.map_key()


def test_bson_key():
    ip = UniqueIP("1.2.3.4", PUBLIC_NETWORK_UUID, PUBLIC_NETWORK_NAME)
    assert ip.bson_key() == {"ip": "1.2.3.4", "network_uuid": PUBLIC_NETWORK_UUID}
    key = ip.bson_key()
    key["extra"] = 1
    assert "extra" not in ip.bson_key()


def test_src_dst_round_trip():
    ip = UniqueIP("1.2.3.4", PUBLIC_NETWORK_UUID, PUBLIC_NETWORK_NAME)
    assert ip.as_src().unpair() == ip
    assert ip.as_dst().unpair().network_name == PUBLIC_NETWORK_NAME
    assert ip.as_src().bson_key() == {"src": "1.2.3.4", "src_network_uuid": PUBLIC_NETWORK_UUID}
    assert ip.as_dst().bson_key() == {"dst": "1.2.3.4", "dst_network_uuid": PUBLIC_NETWORK_UUID}


def test_pair():
    src = UniqueIP("10.0.0.1", UNKNOWN_PRIVATE_NETWORK_UUID, UNKNOWN_PRIVATE_NETWORK_NAME)
    dst = UniqueIP("8.8.8.8", PUBLIC_NETWORK_UUID, PUBLIC_NETWORK_NAME)
    pair = new_unique_ip_pair(src, dst)
    assert pair.src.unpair() == src
    assert pair.dst.unpair() == dst
    assert pair.bson_key() == {
        "src": "10.0.0.1",
        "src_network_uuid": UNKNOWN_PRIVATE_NETWORK_UUID,
        "dst": "8.8.8.8",
        "dst_network_uuid": PUBLIC_NETWORK_UUID,
    }
    assert UniqueIPPair.from_document(pair.to_document()) == pair
    assert new_unique_ip_pair(dst, src).map_key() != pair.map_key()


def test_document_round_trip():
    ip = UniqueIP("1.2.3.4", Binary(AGENT_BYTES, UUID_SUBTYPE), "test")
    restored = UniqueIP.from_document(ip.to_document())
    assert restored == ip
    assert restored.network_name == "test"


def test_set_insert_and_contains():
    ips = UniqueIPSet()
    a = UniqueIP("10.0.0.1", UNKNOWN_PRIVATE_NETWORK_UUID, "x")
    ips.insert(a)
    ips.insert(UniqueIP("10.0.0.1", UNKNOWN_PRIVATE_NETWORK_UUID, "y"))
    ips.insert(UniqueIP("10.0.0.2", UNKNOWN_PRIVATE_NETWORK_UUID, "x"))
    assert len(ips) == 2
    assert a in ips
    assert list(ips)[0].network_name == "x"
    assert UniqueIP("10.0.0.3", UNKNOWN_PRIVATE_NETWORK_UUID) not in ips
    assert len(ips[:1]) == 1
    assert ips.documents()[1]["ip"] == "10.0.0.2"