"""
adrealm Core Types

Fundamental type definitions shared by discovery, binding and lookup.

Design Principles:
- Immutable: all types use frozen attrs
- Validated: constraints enforced at construction
- Secret-safe: credentials never appear in repr()
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Any, Optional, Tuple, Union

import attrs
from attrs import field, validators


# =============================================================================
# ENUMS
# =============================================================================


class TlsMode(Enum):
    """How a connection to a single server is secured."""

    REQUIRE_TLS = auto()  # ldaps:// on the TLS port, failure is fatal
    START_TLS = auto()  # plaintext, then opportunistic in-band upgrade
    PLAINTEXT = auto()


class TrustMode(Enum):
    """Certificate trust handling for TLS connections."""

    TRUST_ALL = auto()
    SYSTEM_TRUST_STORE = auto()


class GroupLookupStrategy(Enum):
    """Algorithm used to resolve a user's groups after a successful bind."""

    TOKEN_GROUPS = auto()
    RECURSIVE = auto()
    AUTO = auto()  # TOKEN_GROUPS, downgraded to RECURSIVE when unsupported

    @property
    def display_name(self) -> str:
        names = {
            GroupLookupStrategy.TOKEN_GROUPS: "Token-Groups",
            GroupLookupStrategy.RECURSIVE: "Recursive group queries",
            GroupLookupStrategy.AUTO: "Automatic",
        }
        return names[self]


class FailureKind(Enum):
    """Closed set of user-visible lookup failures."""

    REJECTED = auto()
    NOT_FOUND = auto()
    UNREACHABLE = auto()


class BindStatus(Enum):
    """Result of a bind that reached the server."""

    OK = auto()
    REJECTED = auto()


# =============================================================================
# PORTS
# =============================================================================

LDAP_PORT = 389
LDAPS_PORT = 636
GLOBAL_CATALOG_PORT = 3268
GLOBAL_CATALOG_TLS_PORT = 3269

TLS_PORT_MAP = {
    LDAP_PORT: LDAPS_PORT,
    GLOBAL_CATALOG_PORT: GLOBAL_CATALOG_TLS_PORT,
}


# =============================================================================
# DOMAIN
# =============================================================================


def _optional_str(value: Optional[str]) -> Optional[str]:
    """Normalize blank strings to None."""
    if value is None:
        return None
    value = value.strip()
    return value or None


@attrs.define(frozen=True, slots=True)
class Domain:
    """
    A configured Active Directory domain.

    Identity is the domain name, compared case-insensitively.

    INVARIANT: name is non-empty
    INVARIANT: bind_secret never shows up in repr()
    """

    name: str = field(
        converter=lambda v: v.strip() if isinstance(v, str) else v,
        validator=[validators.instance_of(str), validators.min_len(1)],
    )
    site: Optional[str] = field(default=None, converter=_optional_str)
    servers: Optional[str] = field(default=None, converter=_optional_str)
    bind_principal: Optional[str] = field(default=None, converter=_optional_str)
    bind_secret: Optional[str] = field(default=None, repr=False)
    trust_mode: Optional[TrustMode] = None

    @property
    def key(self) -> str:
        """Case-insensitive identity key."""
        return self.name.lower()

    @property
    def base_dn(self) -> str:
        """Default naming context derived from the DNS name."""
        return ",".join(f"DC={part}" for part in self.name.split(".") if part)

    def matches(self, name: str) -> bool:
        """
        Check whether a (possibly NetBIOS-style) name designates this domain.

        "CORP" matches "corp.example.com" as well as the full DNS name.
        """
        candidate = name.strip().lower()
        return candidate == self.key or candidate == self.key.split(".")[0]

    def with_credentials(self, principal: Optional[str], secret: Optional[str]) -> Domain:
        """Return a copy with rotated service credentials."""
        return attrs.evolve(self, bind_principal=principal, bind_secret=secret)


# =============================================================================
# SERVERS AND SECURITY POLICY
# =============================================================================


@attrs.define(frozen=True, slots=True)
class ServerCandidate:
    """
    A directory server to try.

    Priority is a rank, not a weight: higher wins.
    """

    host: str = field(validator=[validators.instance_of(str), validators.min_len(1)])
    port: int = field(validator=validators.instance_of(int))
    priority: int = 0

    def __attrs_post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError(f"Port out of range: {self.port}")

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@attrs.define(frozen=True, slots=True)
class ConnectionSecurityPolicy:
    """
    Security policy applied to every connection of a domain.

    INVARIANT: REQUIRE_TLS and PLAINTEXT are mutually exclusive, START_TLS
    only applies when TLS is not required. Both follow from tls_mode being
    a single enum value.
    """

    tls_mode: TlsMode = TlsMode.REQUIRE_TLS
    trust_mode: TrustMode = TrustMode.TRUST_ALL

    @classmethod
    def from_flags(
        cls,
        require_tls: bool,
        start_tls: bool,
        trust_mode: TrustMode = TrustMode.TRUST_ALL,
    ) -> ConnectionSecurityPolicy:
        """Build a policy from the require-TLS / StartTLS configuration flags."""
        if require_tls:
            mode = TlsMode.REQUIRE_TLS
        elif start_tls:
            mode = TlsMode.START_TLS
        else:
            mode = TlsMode.PLAINTEXT
        return cls(tls_mode=mode, trust_mode=trust_mode)

    @property
    def requires_tls(self) -> bool:
        return self.tls_mode is TlsMode.REQUIRE_TLS

    @property
    def default_port(self) -> int:
        return LDAPS_PORT if self.requires_tls else LDAP_PORT


# =============================================================================
# BIND OUTCOMES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class BoundConnection:
    """A live directory connection plus the server that accepted the bind."""

    connection: Any
    server: ServerCandidate
    principal: Optional[str]
    anonymous: bool = False

    def close(self) -> None:
        self.connection.close()


@attrs.define(frozen=True, slots=True)
class Rejected:
    """The server rejected the credentials. Never retried elsewhere."""

    server: ServerCandidate
    reason: str


@attrs.define(frozen=True, slots=True)
class Transient:
    """Connectivity, timeout, TLS or protocol failure on a single server."""

    server: ServerCandidate
    cause: BaseException


@attrs.define(frozen=True, slots=True)
class Unreachable:
    """Every candidate failed with a transient error."""

    attempts: Tuple[Transient, ...] = ()

    @property
    def last_cause(self) -> Optional[BaseException]:
        return self.attempts[-1].cause if self.attempts else None


AttemptFailure = Union[Rejected, Transient]
BindFailure = Union[Rejected, Unreachable]


# =============================================================================
# DIRECTORY RECORDS
# =============================================================================


@attrs.define(frozen=True, slots=True)
class GroupRecord:
    """A directory group."""

    name: str
    dn: str
    domain: str
    sid: Optional[str] = None


@attrs.define(frozen=True, slots=True)
class UserRecord:
    """An authenticated or looked-up user."""

    username: str
    dn: str
    domain: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    sid: Optional[str] = None
    groups: Tuple[GroupRecord, ...] = ()
    server: Optional[ServerCandidate] = None

    @property
    def group_names(self) -> Tuple[str, ...]:
        return tuple(group.name for group in self.groups)


@attrs.define(frozen=True, slots=True)
class LookupFailure:
    """
    User-visible failure of authenticate / lookup operations.

    ``reason`` is a fixed, human readable message. Raw network or protocol
    detail is only available through ``cause``.
    """

    kind: FailureKind
    reason: str
    cause: Any = None
    domain: Optional[str] = None

    @property
    def specificity(self) -> int:
        """Rank used to pick the most specific cause across domains."""
        ranks = {
            FailureKind.REJECTED: 3,
            FailureKind.NOT_FOUND: 2,
            FailureKind.UNREACHABLE: 1,
        }
        return ranks[self.kind]
