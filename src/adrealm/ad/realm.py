"""
adrealm Realm

Entry point for Active Directory authentication.

ADRealm picks one directory backend when it is created:
- Network: one or more configured domains, reached over LDAP
- Native: a host-provided backend, used when no domain is configured

The choice never changes afterwards.

Example:
    config = RealmConfig.from_mapping({
        "domains": [{"name": "corp.example.com"}],
        "cache": {"size": 100, "ttl": 300},
    })
    realm = ADRealm.create(config)

    result = realm.authenticate("jdoe", "secret")
    if is_successful(result):
        print(result.unwrap().group_names)
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, List, Optional, Protocol

import attrs
import structlog
from returns.result import Result

from adrealm.ad.cache import LookupCache
from adrealm.ad.coordinator import DomainCoordinator
from adrealm.ad.diagnostics import RealmDiagnostics
from adrealm.core.config import RealmConfig
from adrealm.core.exceptions import NoDomainsConfigured
from adrealm.core.types import GroupRecord, LookupFailure, UserRecord
from adrealm.discovery.dns import DnsLookup, DnsPythonLookup
from adrealm.discovery.servers import ServerDiscovery
from adrealm.groups.strategy import create_group_resolver
from adrealm.transport.binder import FailoverBinder
from adrealm.transport.directory import DirectoryConnector, Ldap3Connector
from adrealm.transport.tls import TlsNegotiator

logger = structlog.get_logger()


class DirectoryBackend(Protocol):
    """Capabilities every backend provides."""

    def authenticate(self, username: str, secret: Optional[str]) -> Result[UserRecord, LookupFailure]:
        ...

    def lookup_user(self, username: str) -> Result[UserRecord, LookupFailure]:
        ...

    def lookup_group(self, group_name: str) -> Result[GroupRecord, LookupFailure]:
        ...


@attrs.define
class ADRealm:
    """
    Active Directory realm.

    Use ADRealm.create() rather than the constructor.
    """

    config: RealmConfig
    backend: DirectoryBackend
    diagnostics: Optional[RealmDiagnostics] = None

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @classmethod
    def create(
        cls,
        config: RealmConfig,
        native_backend: Optional[DirectoryBackend] = None,
        dns: Optional[DnsLookup] = None,
        connector: Optional[DirectoryConnector] = None,
        relevant_groups: Optional[Callable[[], Iterable[str]]] = None,
    ) -> ADRealm:
        """
        Build a realm and select its backend.

        Args:
            config: Realm configuration
            native_backend: Host backend, used only when no domain is configured
            dns: DNS lookup; dnspython by default
            connector: LDAP connector; ldap3 by default
            relevant_groups: Supplies the group names worth reporting when
                remove_irrelevant_groups is set

        Raises:
            NoDomainsConfigured: No domain configured and no native backend
        """
        if not config.domains:
            if native_backend is None:
                raise NoDomainsConfigured()
            logger.info("realm_created", backend="native")
            return cls(config=config, backend=native_backend)

        if dns is None:
            dns = DnsPythonLookup(timeout=config.dns_timeout)
        if connector is None:
            connector = Ldap3Connector(
                connect_timeout=config.connect_timeout,
                read_timeout=config.read_timeout,
                follow_referrals=config.follow_referrals,
                connection_properties=dict(config.connection_properties),
            )

        coordinator = DomainCoordinator(
            config=config,
            discovery=ServerDiscovery(dns),
            binder=FailoverBinder(TlsNegotiator(connector)),
            groups=create_group_resolver(config.group_lookup_strategy),
            user_cache=LookupCache(size=config.cache.size, ttl=config.cache.ttl),
            group_cache=LookupCache(size=config.cache.size, ttl=config.cache.ttl),
            relevant_groups=relevant_groups,
        )
        logger.info(
            "realm_created",
            backend="network",
            domains=[d.name for d in config.domains],
            strategy=config.group_lookup_strategy.name,
            cache=config.cache.enabled,
        )
        return cls(
            config=config,
            backend=coordinator,
            diagnostics=RealmDiagnostics(coordinator, dns),
        )

    @property
    def is_native(self) -> bool:
        return self.diagnostics is None

    def authenticate(self, username: str, secret: Optional[str]) -> Result[UserRecord, LookupFailure]:
        """Authenticate a user; see DomainCoordinator.resolve()."""
        return self.backend.authenticate(username, secret)

    def lookup_user(self, username: str) -> Result[UserRecord, LookupFailure]:
        return self.backend.lookup_user(username)

    def lookup_group(self, group_name: str) -> Result[GroupRecord, LookupFailure]:
        return self.backend.lookup_group(group_name)

    def diagnose(self, username: Optional[str], secret: Optional[str]) -> str:
        """Connection and authentication report for every domain controller."""
        if self.diagnostics is None:
            return "Using native authentication. No diagnostics available."
        return self.diagnostics.diagnose(username, secret)

    def domain_health(self, domain_name: str) -> List[str]:
        """Name server report for a domain."""
        if self.diagnostics is None:
            return []
        return self.diagnostics.domain_health(domain_name)
