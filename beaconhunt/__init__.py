"""Connection, DNS, host, user agent, certificate and blacklist analysis over MongoDB."""

__version__ = "0.1.0"

__all__ = [
    "blacklist",
    "blacklist_results",
    "certificate",
    "explodeddns",
    "helpers",
    "host",
    "hostname",
    "netutil",
    "remover",
    "uconn",
    "uniqueip",
    "useragent",
]