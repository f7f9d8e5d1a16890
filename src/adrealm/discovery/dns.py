"""
adrealm DNS Lookup

DNS capability consumed by server discovery.

The core only depends on the DnsLookup protocol; DnsPythonLookup is the
production implementation built on dnspython. Every query is bounded by
the resolver lifetime, and every failure surfaces as DnsLookupError.
"""

from __future__ import annotations

from typing import Any, List, Optional, Protocol

import attrs
import dns.exception
import dns.resolver
import structlog

from adrealm.core.exceptions import DnsLookupError

logger = structlog.get_logger()


@attrs.define(frozen=True, slots=True)
class SrvRecord:
    """A single SRV answer: priority, weight, port, target."""

    priority: int
    weight: int
    port: int
    target: str

    def __str__(self) -> str:
        return f"{self.priority} {self.weight} {self.port} {self.target}"


class DnsLookup(Protocol):
    """DNS capability used by discovery and diagnostics."""

    def query_service_records(self, name: str) -> List[SrvRecord]:
        """Return the SRV records for ``name``. Raises DnsLookupError."""
        ...

    def query_name_servers(self, domain: str) -> List[str]:
        """Return the NS records for ``domain``. Raises DnsLookupError."""
        ...


@attrs.define
class DnsPythonLookup:
    """
    DnsLookup backed by dnspython.

    Example:
        lookup = DnsPythonLookup(timeout=5.0)
        records = lookup.query_service_records("_ldap._tcp.corp.example.com")
    """

    timeout: float = 5.0
    nameservers: Optional[List[str]] = None

    _resolver: Optional[dns.resolver.Resolver] = None
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @property
    def resolver(self) -> dns.resolver.Resolver:
        """Get or create the resolver."""
        if self._resolver is None:
            resolver = dns.resolver.Resolver()
            if self.nameservers:
                resolver.nameservers = list(self.nameservers)
            resolver.lifetime = self.timeout
            resolver.timeout = self.timeout
            self._resolver = resolver
        return self._resolver

    def query_service_records(self, name: str) -> List[SrvRecord]:
        answers = self._resolve(name, "SRV")
        records = [
            SrvRecord(
                priority=int(rdata.priority),
                weight=int(rdata.weight),
                port=int(rdata.port),
                target=str(rdata.target),
            )
            for rdata in answers
        ]
        self._logger.debug("dns_srv_resolved", name=name, count=len(records))
        return records

    def query_name_servers(self, domain: str) -> List[str]:
        answers = self._resolve(domain, "NS")
        return [str(rdata.target) for rdata in answers]

    def _resolve(self, name: str, rdtype: str) -> Any:
        try:
            return self.resolver.resolve(name, rdtype)
        except dns.resolver.NXDOMAIN as e:
            raise DnsLookupError(name, f"{name}: no such domain") from e
        except dns.resolver.NoAnswer as e:
            raise DnsLookupError(name, f"{name}: no {rdtype} record") from e
        except dns.resolver.NoNameservers as e:
            raise DnsLookupError(name, f"{name}: no name server answered") from e
        except dns.exception.Timeout as e:
            raise DnsLookupError(name, f"{name}: DNS timeout after {self.timeout}s") from e
        except dns.exception.DNSException as e:
            raise DnsLookupError(name, f"{name}: {e}") from e
