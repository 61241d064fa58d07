# beaconhunt

Analysis building blocks for network connection data stored in MongoDB.
The package turns aggregated connection data into MongoDB update documents
and aggregation pipelines, writes them with `pymongo`, and reads summarised
results back as dataclasses.

Requires Python 3.10 or later.

## Installation

```
pip install .
pip install ".[test]"   # with the test dependencies
```

## Modules

- `beaconhunt.netutil` – IP helpers: `parse_subnets` (CIDR ranges, a bare
  address read as `/32`, `ValueError` on anything else), `ip_is_publicly_routable`,
  `contains_ip`, `contains_domain` (exact match or a leading `*` wildcard, which
  also matches the bare domain), `is_ip`, `is_ipv4`, `ipv4_to_binary`. It also
  holds the network UUIDs and names used for public and unknown private
  addresses (`PUBLIC_NETWORK_UUID`, `UNKNOWN_PRIVATE_NETWORK_UUID`, …).
- `beaconhunt.helpers` – `exists`, `is_dir`, `sort_by_string_length`,
  `abs64` (64-bit two's complement; the minimum maps to itself),
  `round_half_up`, `string_in_slice`.
- `beaconhunt.uniqueip` – `UniqueIP`, `UniqueSrcIP`, `UniqueDstIP`,
  `UniqueIPPair` and `UniqueIPSet`. They tie an address to the network it was
  seen on; the network name plays no part in equality. Build them with
  `new_unique_ip(ip, agent_uuid, agent_name)` and `new_unique_ip_pair`.
- `beaconhunt.hostname` – `HostnameInput`, `build_hostname_update`,
  `upsert_hostnames`.
- `beaconhunt.explodeddns` – `exploded_domains`, `build_update`,
  `analyze_domain`, `upsert_exploded_dns`, `create_indexes`,
  `results_pipeline`, `results` (returning `ExplodedDNSResult`).
- `beaconhunt.host` – `HostInput`, `ExplodedDNS`, `build_exploded_dns_array`,
  `max_dns_query_count_query`, `standard_query`,
  `exploded_dns_entries_update`, `create_indexes`, `upsert_hosts`.
- `beaconhunt.uconn` – `UconnInput`, `build_uconn_query` (pairs at or above the
  connection limit are stored as strobes, without timestamps or byte lists),
  `host_max_dur_update`, `analyze`, `upsert_uconns`, `create_indexes`,
  `long_conn_pipeline`, `long_conn_results` (returning `LongConnResult`).
- `beaconhunt.certificate` – `CertificateInput`, `build_certificate_update`,
  `upsert_certificates`.
- `beaconhunt.useragent` – `UserAgentInput`, `host_query`,
  `build_useragent_update`, `rare_signature_pipeline`, `upsert_user_agents`,
  `results_pipeline`, `results` (returning `UserAgentResult`).
- `beaconhunt.blacklist` – `ConnectionPeer`, `append_blacklisted_dst_query`,
  `append_blacklisted_src_query`, `peers_pipeline`,
  `update_blacklisted_peers`, `create_indexes`.
- `beaconhunt.blacklist_results` – `hostname_results`, `src_ip_results`,
  `dst_ip_results` and their pipelines, returning `HostnameResult` and
  `IPResult`.
- `beaconhunt.remover` – `reduce_dns_sub_count_updates` and `remove_chunk`,
  which lowers subdomain counts and then deletes one chunk from the given
  collections; failures raise `RemovalError`.

The `upsert_*` functions, `update_blacklisted_peers` and `remove_chunk` print a
one-line progress heading and log write failures through the standard
`logging` module instead of raising.

## Example

```python
from ipaddress import ip_address

from beaconhunt.netutil import ip_is_publicly_routable
from beaconhunt.uniqueip import UniqueIPSet, new_unique_ip

print(ip_is_publicly_routable(ip_address("10.1.2.3")))   # False

host = new_unique_ip(ip_address("192.168.1.1"),
                     "ff0d0776-0cdc-4a10-b793-522bcd48a560", "office")
seen = UniqueIPSet()
seen.insert(host)
print(host in seen, host.bson_key())
```

Working against a database:

```python
from pymongo import MongoClient

from beaconhunt.explodeddns import create_indexes, results, upsert_exploded_dns

db = MongoClient("mongodb://localhost:27017")["dataset"]
create_indexes(db, "explodedDns")
upsert_exploded_dns(db, "hostnames", "explodedDns", 0, {"a.b.example.com": 3})
for row in results(db, "explodedDns", 1000, False):
    print(row.domain, row.subdomain_count, row.visited)
```

## What it does not do

- There is no command-line program; everything is called from Python.
- It does not read or parse connection logs: the `*Input` objects must be
  built by the caller.
- It does not download or maintain blacklists. Host and hostname analysis
  only look entries up in a blacklist database the caller passes in.
- It produces no reports or HTML pages, only result objects.
- It has no configuration file handling; collection names, chunk numbers and
  limits are passed as arguments.

## Tests

```
pytest
```