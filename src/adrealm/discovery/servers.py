"""
adrealm Server Discovery

Turns a domain (and optional site) into an ordered list of directory
servers to try.

Lookup order:
1. Explicit "host[:port],..." list, returned as given, no DNS
2. _gc._tcp.<site>._sites.<domain>     (global catalog, same site)
3. _gc._tcp.<domain>                    (global catalog)
4. _ldap._tcp.<site>._sites.<domain>   (domain controllers, same site)
5. _ldap._tcp.<domain>                  (domain controllers)

The first tier yielding at least one record wins. SRV records carry no
TLS-specific entries, so plaintext ports are mapped to their TLS
counterparts when the policy requires TLS.
"""

from __future__ import annotations

from typing import Any, List, Optional, Tuple

import attrs
import structlog

from adrealm.core.exceptions import ConfigurationError, DnsLookupError, NoServersFound
from adrealm.core.types import TLS_PORT_MAP, ConnectionSecurityPolicy, ServerCandidate
from adrealm.discovery.dns import DnsLookup, SrvRecord

logger = structlog.get_logger()

GLOBAL_CATALOG_SERVICE = "_gc._tcp."
DOMAIN_CONTROLLER_SERVICE = "_ldap._tcp."


# =============================================================================
# HELPERS
# =============================================================================


def srv_query_names(domain_name: str, site: Optional[str] = None) -> List[str]:
    """
    SRV names to query for a domain, in precedence order.

    Topologically close servers come first, and the forest-wide global
    catalog is preferred over single-domain controllers.
    """
    names = []
    for service in (GLOBAL_CATALOG_SERVICE, DOMAIN_CONTROLLER_SERVICE):
        if site:
            names.append(f"{service}{site}._sites.{domain_name}")
        names.append(f"{service}{domain_name}")
    return names


def remap_tls_port(port: int) -> int:
    """Map a well-known plaintext LDAP port to its TLS counterpart."""
    return TLS_PORT_MAP.get(port, port)


def _parse_token(token: str, default_port: int) -> Tuple[str, int]:
    """Parse one "host", "host:port" or "[v6addr]:port" token."""
    if token.startswith("["):
        end = token.find("]")
        if end == -1:
            raise ConfigurationError(f"Malformed server address: {token!r}")
        host = token[1:end]
        rest = token[end + 1 :]
        if rest and not rest.startswith(":"):
            raise ConfigurationError(f"Malformed server address: {token!r}")
        port_text = rest[1:] if rest else ""
    elif token.count(":") == 1:
        host, port_text = token.split(":")
    else:
        host, port_text = token, ""

    host = host.strip()
    if not host:
        raise ConfigurationError(f"Missing host in server address: {token!r}")

    if not port_text:
        return host, default_port

    try:
        port = int(port_text)
    except ValueError:
        raise ConfigurationError(f"Invalid port in server address: {token!r}") from None
    if not 0 < port < 65536:
        raise ConfigurationError(f"Port out of range in server address: {token!r}")
    return host, port


def parse_server_list(servers: str, default_port: int) -> List[ServerCandidate]:
    """
    Parse an explicit "host[:port],host[:port]" list.

    Order is preserved. Hosts without a port get ``default_port``.

    Raises:
        ConfigurationError: If any token is malformed
    """
    result = []
    for raw in servers.split(","):
        token = raw.strip()
        if not token:
            raise ConfigurationError(f"Empty entry in server list: {servers!r}")
        host, port = _parse_token(token, default_port)
        result.append(ServerCandidate(host=host, port=port))
    return result


def rank_records(
    records: List[SrvRecord],
    policy: ConnectionSecurityPolicy,
) -> List[ServerCandidate]:
    """
    Convert SRV records into candidates, highest priority first.

    Ties keep DNS answer order; weight is ignored.
    """
    candidates = []
    for record in records:
        host = record.target
        if host.endswith("."):
            host = host[:-1]
        port = remap_tls_port(record.port) if policy.requires_tls else record.port
        candidates.append(ServerCandidate(host=host, port=port, priority=record.priority))

    # sorted() is stable, so equal priorities stay in answer order
    return sorted(candidates, key=lambda c: -c.priority)


# =============================================================================
# SERVER DISCOVERY
# =============================================================================


@attrs.define
class ServerDiscovery:
    """
    Domain controller discovery.

    Example:
        discovery = ServerDiscovery(dns=DnsPythonLookup())
        servers = discovery.discover("corp.example.com", "Paris", None, policy)
    """

    dns: DnsLookup

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def discover(
        self,
        domain_name: str,
        site: Optional[str],
        explicit_servers: Optional[str],
        policy: ConnectionSecurityPolicy,
    ) -> List[ServerCandidate]:
        """
        Resolve the servers to try for a domain.

        Args:
            domain_name: DNS name of the domain
            site: AD site to prefer, if any
            explicit_servers: "host:port,..." list overriding discovery
            policy: Connection policy (drives default and TLS ports)

        Returns:
            Non-empty list of candidates in the order they should be tried

        Raises:
            ConfigurationError: If the explicit list is malformed
            NoServersFound: If no DNS tier yields a record
        """
        if explicit_servers:
            servers = parse_server_list(explicit_servers, policy.default_port)
            self._logger.debug(
                "explicit_servers",
                domain=domain_name,
                servers=[str(s) for s in servers],
            )
            return servers

        failure: Optional[DnsLookupError] = None
        query = domain_name
        records: List[SrvRecord] = []

        for query in srv_query_names(domain_name, site):
            self._logger.debug("srv_lookup", name=query)
            try:
                records = self.dns.query_service_records(query)
            except DnsLookupError as e:
                failure = e
                continue
            if records:
                break

        if not records:
            self._logger.warning(
                "no_servers_found",
                domain=domain_name,
                site=site,
                error=str(failure) if failure else None,
            )
            raise NoServersFound(domain_name, query, failure) from failure

        for record in records:
            self._logger.debug("srv_record_found", record=str(record))

        servers = rank_records(records, policy)
        self._logger.debug(
            "servers_discovered",
            domain=domain_name,
            name=query,
            servers=[str(s) for s in servers],
        )
        return servers
