"""
adrealm Discovery Module

Domain controller discovery through DNS service records.

Components:
- dns: DNS lookup capability and its dnspython implementation
- servers: SRV tier walk, ranking and explicit server lists
"""

from adrealm.discovery.dns import DnsLookup, DnsPythonLookup, SrvRecord
from adrealm.discovery.servers import (
    ServerDiscovery,
    parse_server_list,
    remap_tls_port,
    srv_query_names,
)

__all__ = [
    "DnsLookup",
    "DnsPythonLookup",
    "SrvRecord",
    "ServerDiscovery",
    "parse_server_list",
    "remap_tls_port",
    "srv_query_names",
]
