"""
adrealm Core Module

Foundational types and abstractions shared by discovery, transport and
lookup.

Components:
- types: Domain, ServerCandidate, security policy, bind outcomes, records
- state_machine: Base state machine for bind attempts
- exceptions: Custom exception types
- config: Realm configuration (import adrealm.core.config directly)
- logging: structlog setup
"""

from adrealm.core.types import (
    BindStatus,
    BoundConnection,
    ConnectionSecurityPolicy,
    Domain,
    FailureKind,
    GroupLookupStrategy,
    GroupRecord,
    LookupFailure,
    Rejected,
    ServerCandidate,
    TlsMode,
    Transient,
    TrustMode,
    Unreachable,
    UserRecord,
)
from adrealm.core.state_machine import StateMachineBase, Transition
from adrealm.core.exceptions import (
    ADRealmError,
    ConfigurationError,
    DirectoryError,
    DiscoveryError,
    NoDomainsConfigured,
    NoServersFound,
    TlsNegotiationFailed,
)

__all__ = [
    # Types
    "BindStatus",
    "BoundConnection",
    "ConnectionSecurityPolicy",
    "Domain",
    "FailureKind",
    "GroupLookupStrategy",
    "GroupRecord",
    "LookupFailure",
    "Rejected",
    "ServerCandidate",
    "TlsMode",
    "Transient",
    "TrustMode",
    "Unreachable",
    "UserRecord",
    # State Machine
    "StateMachineBase",
    "Transition",
    # Exceptions
    "ADRealmError",
    "ConfigurationError",
    "DirectoryError",
    "DiscoveryError",
    "NoDomainsConfigured",
    "NoServersFound",
    "TlsNegotiationFailed",
]
