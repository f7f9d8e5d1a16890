"""
adrealm Directory Connection Layer

Directory-connection capability consumed by the binder and the group
resolvers, plus its ldap3 implementation.

Capability:
    connector.open(server, use_tls, trust_mode) -> connection
    connection.upgrade_tls()
    connection.bind(principal, secret) -> BindStatus.OK | BindStatus.REJECTED
    connection.search(base, filter, attributes, scope) -> [DirectoryEntry]
    connection.close()

Anything that is not an explicit credential rejection raises
DirectoryError; the binder treats it as a transient failure.
"""

from __future__ import annotations

import ssl
from enum import Enum, auto
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

import attrs
import structlog
from ldap3 import ANONYMOUS, BASE, NONE, SIMPLE, SUBTREE, Connection, Server, Tls
from ldap3.core.exceptions import LDAPException

from adrealm.core.exceptions import DirectoryError, TlsNegotiationFailed
from adrealm.core.types import BindStatus, ServerCandidate, TrustMode

logger = structlog.get_logger()

# LDAP result codes (RFC 4511)
RESULT_SUCCESS = 0
RESULT_SIZE_LIMIT_EXCEEDED = 4
RESULT_NO_SUCH_OBJECT = 32
RESULT_INVALID_CREDENTIALS = 49

# Attributes returned as raw bytes rather than decoded text
BINARY_ATTRIBUTES = frozenset({"tokengroups", "objectsid"})


class SearchScope(Enum):
    BASE = auto()
    SUBTREE = auto()


@attrs.define(frozen=True, slots=True)
class DirectoryEntry:
    """
    One search result row.

    Attribute names are matched case-insensitively. Every attribute maps to
    a list of values; binary attributes hold bytes.
    """

    dn: str
    attributes: Mapping[str, List[Any]] = attrs.Factory(dict)

    def get(self, name: str) -> List[Any]:
        wanted = name.lower()
        for key, values in self.attributes.items():
            if key.lower() == wanted:
                return list(values)
        return []

    def first(self, name: str) -> Optional[Any]:
        values = self.get(name)
        return values[0] if values else None

    def has(self, name: str) -> bool:
        wanted = name.lower()
        return any(key.lower() == wanted for key in self.attributes)


class DirectoryConnection(Protocol):
    """An open session with a single directory server."""

    def upgrade_tls(self) -> None:
        """Upgrade in-band with StartTLS. Raises TlsNegotiationFailed."""
        ...

    def bind(self, principal: Optional[str], secret: Optional[str]) -> BindStatus:
        """Bind; an empty secret means anonymous. Raises DirectoryError."""
        ...

    def search(
        self,
        base: str,
        search_filter: str,
        attributes: Sequence[str],
        scope: SearchScope = SearchScope.SUBTREE,
    ) -> List[DirectoryEntry]:
        """Search the directory. Raises DirectoryError."""
        ...

    def close(self) -> None:
        ...


class DirectoryConnector(Protocol):
    """Opens sessions against a server."""

    def open(
        self,
        server: ServerCandidate,
        use_tls: bool,
        trust_mode: TrustMode,
    ) -> DirectoryConnection:
        """Open a session, over TLS when ``use_tls``. Raises DirectoryError."""
        ...


# =============================================================================
# RESULT CLASSIFICATION
# =============================================================================


def classify_bind_result(result: Optional[Mapping[str, Any]]) -> BindStatus:
    """
    Classify an LDAP bind result.

    Only result code 49 (invalidCredentials) counts as a rejection; every
    other non-success code is a directory error.

    Raises:
        DirectoryError: For any failure other than invalid credentials
    """
    result = dict(result or {})
    code = result.get("result")
    if code == RESULT_SUCCESS:
        return BindStatus.OK
    if code == RESULT_INVALID_CREDENTIALS or result.get("description") == "invalidCredentials":
        return BindStatus.REJECTED
    raise DirectoryError(
        f"Bind failed: {result.get('description') or 'no response'}",
        code=code,
        result=result,
    )


def _normalize_attributes(entry: Mapping[str, Any]) -> Dict[str, List[Any]]:
    attributes: Dict[str, List[Any]] = {}
    decoded = entry.get("attributes") or {}
    raw = entry.get("raw_attributes") or {}
    for name, values in decoded.items():
        if name.lower() in BINARY_ATTRIBUTES:
            values = raw.get(name, values)
        if values is None:
            values = []
        elif isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
            values = [values]
        attributes[name] = list(values)
    return attributes


# =============================================================================
# LDAP3 IMPLEMENTATION
# =============================================================================


@attrs.define
class Ldap3Connection:
    """DirectoryConnection over an ldap3 Connection."""

    server: ServerCandidate
    conn: Connection

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def upgrade_tls(self) -> None:
        try:
            upgraded = self.conn.start_tls()
        except LDAPException as e:
            raise TlsNegotiationFailed(f"StartTLS failed on {self.server}: {e}") from e
        if not upgraded:
            raise TlsNegotiationFailed(
                f"StartTLS refused by {self.server}",
                result=dict(self.conn.result or {}),
            )

    def bind(self, principal: Optional[str], secret: Optional[str]) -> BindStatus:
        if principal and secret:
            self.conn.user = principal
            self.conn.password = secret
            self.conn.authentication = SIMPLE
        else:
            self.conn.user = None
            self.conn.password = None
            self.conn.authentication = ANONYMOUS

        try:
            self.conn.bind()
        except LDAPException as e:
            raise DirectoryError(f"Bind to {self.server} failed: {e}") from e
        return classify_bind_result(self.conn.result)

    def search(
        self,
        base: str,
        search_filter: str,
        attributes: Sequence[str],
        scope: SearchScope = SearchScope.SUBTREE,
    ) -> List[DirectoryEntry]:
        try:
            self.conn.search(
                search_base=base,
                search_filter=search_filter,
                search_scope=BASE if scope is SearchScope.BASE else SUBTREE,
                attributes=list(attributes),
            )
        except LDAPException as e:
            raise DirectoryError(f"Search on {self.server} failed: {e}") from e

        result = dict(self.conn.result or {})
        code = result.get("result", RESULT_SUCCESS)
        if code == RESULT_NO_SUCH_OBJECT:
            return []
        if code not in (RESULT_SUCCESS, RESULT_SIZE_LIMIT_EXCEEDED):
            raise DirectoryError(
                f"Search on {self.server} failed: {result.get('description')}",
                code=code,
                result=result,
            )

        return [
            DirectoryEntry(dn=item["dn"], attributes=_normalize_attributes(item))
            for item in (self.conn.response or [])
            if item.get("type") == "searchResEntry"
        ]

    def close(self) -> None:
        try:
            self.conn.unbind()
        except LDAPException as e:
            self._logger.debug("unbind_failed", server=str(self.server), error=str(e))


@attrs.define
class Ldap3Connector:
    """
    DirectoryConnector opening ldap3 sessions.

    Example:
        connector = Ldap3Connector(connect_timeout=5.0, read_timeout=15.0)
        conn = connector.open(ServerCandidate("dc1.corp.example.com", 636), True,
                              TrustMode.SYSTEM_TRUST_STORE)
    """

    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    follow_referrals: bool = True
    connection_properties: Mapping[str, Any] = attrs.Factory(dict)

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def tls_configuration(self, trust_mode: TrustMode) -> Tls:
        """TLS settings for a trust mode; the system store is used when validating."""
        if trust_mode is TrustMode.TRUST_ALL:
            return Tls(validate=ssl.CERT_NONE)
        return Tls(validate=ssl.CERT_REQUIRED)

    def open(
        self,
        server: ServerCandidate,
        use_tls: bool,
        trust_mode: TrustMode,
    ) -> Ldap3Connection:
        ldap_server = Server(
            server.host,
            port=server.port,
            use_ssl=use_tls,
            tls=self.tls_configuration(trust_mode),
            connect_timeout=self.connect_timeout,
            get_info=NONE,
        )
        options = {
            "receive_timeout": self.read_timeout,
            "auto_referrals": self.follow_referrals,
            "raise_exceptions": False,
        }
        options.update(self.connection_properties)

        self._logger.debug(
            "directory_connecting",
            url=f"{'ldaps' if use_tls else 'ldap'}://{server}/",
        )
        try:
            conn = Connection(ldap_server, **options)
            conn.open()
        except LDAPException as e:
            if use_tls:
                raise TlsNegotiationFailed(f"Cannot open LDAPS session to {server}: {e}") from e
            raise DirectoryError(f"Cannot connect to {server}: {e}") from e

        return Ldap3Connection(server=server, conn=conn)
