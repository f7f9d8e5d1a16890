"""
Pytest configuration and shared fixtures for adrealm tests.

The directory and DNS are scripted fakes: tests decide which servers are
down, which refuse StartTLS, which passwords are valid and what the
directory tree contains, then inspect the recorded calls.
"""

import re
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

import pytest

from adrealm.ad.cache import LookupCache
from adrealm.ad.coordinator import DomainCoordinator
from adrealm.core.config import CacheConfig, RealmConfig
from adrealm.core.exceptions import DirectoryError, DnsLookupError, TlsNegotiationFailed
from adrealm.core.types import (
    BindStatus,
    ConnectionSecurityPolicy,
    Domain,
    GroupLookupStrategy,
    ServerCandidate,
    TlsMode,
    TrustMode,
)
from adrealm.discovery.dns import SrvRecord
from adrealm.discovery.servers import ServerDiscovery
from adrealm.groups.sid import sid_to_binary
from adrealm.groups.strategy import create_group_resolver
from adrealm.transport.binder import FailoverBinder
from adrealm.transport.directory import DirectoryEntry, SearchScope
from adrealm.transport.tls import TlsNegotiator


# =============================================================================
# FAKE DNS
# =============================================================================


class FakeDns:
    """DnsLookup answering from a name -> records (or exception) table."""

    def __init__(
        self,
        records: Optional[Dict[str, Union[List[SrvRecord], Exception]]] = None,
        name_servers: Optional[Dict[str, List[str]]] = None,
    ):
        self.records = dict(records or {})
        self.name_servers = dict(name_servers or {})
        self.queries: List[str] = []

    def query_service_records(self, name: str) -> List[SrvRecord]:
        self.queries.append(name)
        value = self.records.get(name)
        if value is None:
            raise DnsLookupError(name, f"{name}: no such domain")
        if isinstance(value, Exception):
            raise value
        return list(value)

    def query_name_servers(self, domain: str) -> List[str]:
        self.queries.append(domain)
        if domain not in self.name_servers:
            raise DnsLookupError(domain, f"{domain}: no such domain")
        return list(self.name_servers[domain])


def srv(target: str, port: int = 389, priority: int = 0, weight: int = 100) -> SrvRecord:
    """Helper to create an SRV answer."""
    return SrvRecord(priority=priority, weight=weight, port=port, target=target)


# =============================================================================
# FAKE DIRECTORY
# =============================================================================


_CLAUSE = re.compile(r"\((sAMAccountName|cn|userPrincipalName|objectSid)=([^()]*)\)", re.I)


class FakeDirectory:
    """
    In-memory directory shared by every connection a FakeConnector opens.

    Attributes:
        down: Hosts refusing connections
        tls_down: Hosts whose LDAPS handshake fails
        start_tls_refused: Hosts refusing the StartTLS upgrade
        bind_errors: Host -> error raised on bind
        search_errors: Host -> error raised on search
        passwords: Principal (lowercase) -> valid password
        entries: DN (lowercase) -> entry
        calls: Every operation, as (action, host, detail)
    """

    def __init__(self):
        self.down: Set[str] = set()
        self.tls_down: Set[str] = set()
        self.start_tls_refused: Set[str] = set()
        self.bind_errors: Dict[str, Exception] = {}
        self.search_errors: Dict[str, Exception] = {}
        self.passwords: Dict[str, str] = {}
        self.entries: Dict[str, DirectoryEntry] = {}
        self.calls: List[Tuple[str, str, object]] = []

    def add(self, entry: DirectoryEntry) -> DirectoryEntry:
        self.entries[entry.dn.lower()] = entry
        return entry

    def calls_of(self, action: str) -> List[Tuple[str, str, object]]:
        return [call for call in self.calls if call[0] == action]

    def search(
        self,
        base: str,
        search_filter: str,
        scope: SearchScope,
    ) -> List[DirectoryEntry]:
        if scope is SearchScope.BASE:
            entry = self.entries.get(base.lower())
            if entry is None:
                return []
            if search_filter == "(objectClass=group)" and not _is_group(entry):
                return []
            return [entry]

        wants_group = "objectCategory=group" in search_filter
        wants_user = "objectCategory=person" in search_filter
        clauses = _CLAUSE.findall(search_filter)

        result = []
        for entry in self.entries.values():
            if not entry.dn.lower().endswith(base.lower()):
                continue
            if wants_group and not _is_group(entry):
                continue
            if wants_user and _is_group(entry):
                continue
            if any(_clause_matches(entry, name, value) for name, value in clauses):
                result.append(entry)
        return result


def _is_group(entry: DirectoryEntry) -> bool:
    return "group" in [c.lower() for c in entry.get("objectClass")]


def _clause_matches(entry: DirectoryEntry, name: str, value: str) -> bool:
    if name.lower() == "objectsid":
        wanted = bytes.fromhex(value.replace("\\", ""))
        return entry.first("objectSid") == wanted
    return any(str(v).lower() == value.lower() for v in entry.get(name))


class FakeConnection:
    """DirectoryConnection over a FakeDirectory."""

    def __init__(self, directory: FakeDirectory, server: ServerCandidate, tls: bool):
        self.directory = directory
        self.server = server
        self.tls = tls
        self.closed = False

    def upgrade_tls(self) -> None:
        self.directory.calls.append(("start_tls", self.server.host, None))
        if self.server.host in self.directory.start_tls_refused:
            raise TlsNegotiationFailed(f"StartTLS refused by {self.server}")
        self.tls = True

    def bind(self, principal: Optional[str], secret: Optional[str]) -> BindStatus:
        self.directory.calls.append(("bind", self.server.host, principal))
        error = self.directory.bind_errors.get(self.server.host)
        if error is not None:
            raise error
        if not principal or not secret:
            return BindStatus.OK
        if self.directory.passwords.get(principal.lower()) == secret:
            return BindStatus.OK
        return BindStatus.REJECTED

    def search(
        self,
        base: str,
        search_filter: str,
        attributes: Sequence[str],
        scope: SearchScope = SearchScope.SUBTREE,
    ) -> List[DirectoryEntry]:
        self.directory.calls.append(("search", self.server.host, (base, search_filter)))
        error = self.directory.search_errors.get(self.server.host)
        if error is not None:
            raise error
        return self.directory.search(base, search_filter, scope)

    def close(self) -> None:
        self.directory.calls.append(("close", self.server.host, None))
        self.closed = True


class FakeConnector:
    """DirectoryConnector handing out FakeConnections."""

    def __init__(self, directory: FakeDirectory):
        self.directory = directory
        self.connections: List[FakeConnection] = []

    def open(self, server: ServerCandidate, use_tls: bool, trust_mode: TrustMode) -> FakeConnection:
        self.directory.calls.append(("open", server.host, use_tls))
        if server.host in self.directory.down:
            raise DirectoryError(f"Cannot connect to {server}: connection refused")
        if use_tls and server.host in self.directory.tls_down:
            raise TlsNegotiationFailed(f"Cannot open LDAPS session to {server}")
        connection = FakeConnection(self.directory, server, use_tls)
        self.connections.append(connection)
        return connection


# =============================================================================
# ENTRY BUILDERS
# =============================================================================


def user_entry(
    dn: str,
    sam: str,
    sid: Optional[str] = None,
    member_of: Iterable[str] = (),
    token_groups: Optional[Iterable[str]] = None,
    upn: Optional[str] = None,
    display_name: Optional[str] = None,
    mail: Optional[str] = None,
) -> DirectoryEntry:
    """Helper to create a user entry; token_groups=None omits the attribute."""
    attributes: Dict[str, List[object]] = {
        "objectClass": ["top", "person", "user"],
        "sAMAccountName": [sam],
        "memberOf": list(member_of),
    }
    if sid:
        attributes["objectSid"] = [sid_to_binary(sid)]
    if token_groups is not None:
        attributes["tokenGroups"] = [sid_to_binary(s) for s in token_groups]
    if upn:
        attributes["userPrincipalName"] = [upn]
    if display_name:
        attributes["displayName"] = [display_name]
    if mail:
        attributes["mail"] = [mail]
    return DirectoryEntry(dn=dn, attributes=attributes)


def group_entry(dn: str, name: str, sid: str, member_of: Iterable[str] = ()) -> DirectoryEntry:
    """Helper to create a group entry."""
    return DirectoryEntry(
        dn=dn,
        attributes={
            "objectClass": ["top", "group"],
            "cn": [name],
            "sAMAccountName": [name],
            "objectSid": [sid_to_binary(sid)],
            "memberOf": list(member_of),
        },
    )


CORP = "corp.example.com"
CORP_BASE = "DC=corp,DC=example,DC=com"
LAB = "lab.example.com"
LAB_BASE = "DC=lab,DC=example,DC=com"
CORP_SID = "S-1-5-21-1004336348-1177238915-682003330"
LAB_SID = "S-1-5-21-2000000000-2000000000-2000000000"


def populate_corp(directory: FakeDirectory, token_groups: bool = True) -> None:
    """
    corp.example.com: jdoe in "Developers", nested in "Staff".

    Service account svc@corp.example.com / svc-secret.
    """
    staff = f"CN=Staff,OU=Groups,{CORP_BASE}"
    developers = f"CN=Developers,OU=Groups,{CORP_BASE}"
    directory.add(group_entry(staff, "Staff", f"{CORP_SID}-2001"))
    directory.add(group_entry(developers, "Developers", f"{CORP_SID}-2002", member_of=[staff]))
    directory.add(
        user_entry(
            f"CN=John Doe,OU=Users,{CORP_BASE}",
            "jdoe",
            sid=f"{CORP_SID}-1105",
            member_of=[developers],
            token_groups=[f"{CORP_SID}-2002", f"{CORP_SID}-2001"] if token_groups else None,
            upn="jdoe@corp.example.com",
            display_name="John Doe",
            mail="jdoe@corp.example.com",
        )
    )
    directory.passwords["jdoe@corp.example.com"] = "correct-horse"
    directory.passwords["svc@corp.example.com"] = "svc-secret"


def populate_lab(directory: FakeDirectory) -> None:
    """lab.example.com: its own jdoe, in "Testers"."""
    testers = f"CN=Testers,{LAB_BASE}"
    directory.add(group_entry(testers, "Testers", f"{LAB_SID}-3001"))
    directory.add(
        user_entry(
            f"CN=jdoe,CN=Users,{LAB_BASE}",
            "jdoe",
            sid=f"{LAB_SID}-1105",
            member_of=[testers],
            token_groups=[f"{LAB_SID}-3001"],
        )
    )
    directory.passwords["jdoe@lab.example.com"] = "lab-password"
    directory.passwords["svc@lab.example.com"] = "svc-secret"


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def directory() -> FakeDirectory:
    """Empty fake directory."""
    return FakeDirectory()


@pytest.fixture
def connector(directory: FakeDirectory) -> FakeConnector:
    return FakeConnector(directory)


@pytest.fixture
def fake_dns() -> FakeDns:
    return FakeDns()


@pytest.fixture
def tls_policy() -> ConnectionSecurityPolicy:
    """LDAPS-only policy."""
    return ConnectionSecurityPolicy(tls_mode=TlsMode.REQUIRE_TLS)


@pytest.fixture
def start_tls_policy() -> ConnectionSecurityPolicy:
    return ConnectionSecurityPolicy(tls_mode=TlsMode.START_TLS)


@pytest.fixture
def binder(connector: FakeConnector) -> FailoverBinder:
    return FailoverBinder(TlsNegotiator(connector))


@pytest.fixture
def corp_domain() -> Domain:
    """corp.example.com with two explicit domain controllers."""
    return Domain(
        name=CORP,
        servers="dc1.corp.example.com,dc2.corp.example.com",
        bind_principal="svc@corp.example.com",
        bind_secret="svc-secret",
    )


@pytest.fixture
def lab_domain() -> Domain:
    return Domain(
        name=LAB,
        servers="dc1.lab.example.com",
        bind_principal="svc@lab.example.com",
        bind_secret="svc-secret",
    )


def make_coordinator(
    domains: Sequence[Domain],
    connector: FakeConnector,
    dns: Optional[FakeDns] = None,
    strategy: GroupLookupStrategy = GroupLookupStrategy.AUTO,
    cache: Optional[CacheConfig] = None,
    **config_options,
) -> DomainCoordinator:
    """Helper to create a coordinator over fake DNS and directory."""
    cache = cache or CacheConfig()
    config = RealmConfig(
        domains=tuple(domains),
        group_lookup_strategy=strategy,
        cache=cache,
        **config_options,
    )
    return DomainCoordinator(
        config=config,
        discovery=ServerDiscovery(dns or FakeDns()),
        binder=FailoverBinder(TlsNegotiator(connector)),
        groups=create_group_resolver(strategy),
        user_cache=LookupCache(size=cache.size, ttl=cache.ttl),
        group_cache=LookupCache(size=cache.size, ttl=cache.ttl),
    )


# =============================================================================
# PYTEST MARKERS
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests requiring a real AD environment"
    )
