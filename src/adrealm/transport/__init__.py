"""
adrealm Transport Layer

Directory connections, TLS negotiation and failover binding.

Components:
- directory: Directory-connection capability and its ldap3 implementation
- tls: TlsNegotiator (LDAPS, opportunistic StartTLS, plaintext)
- binder: FailoverBinder and the per-attempt state machine
"""

from adrealm.transport.directory import (
    DirectoryConnection,
    DirectoryConnector,
    DirectoryEntry,
    Ldap3Connection,
    Ldap3Connector,
    SearchScope,
    classify_bind_result,
)
from adrealm.transport.tls import TlsNegotiator
from adrealm.transport.binder import (
    AttemptState,
    BindAttempt,
    FailoverBinder,
    is_anonymous,
    should_try_next,
)

__all__ = [
    # Directory
    "DirectoryConnection",
    "DirectoryConnector",
    "DirectoryEntry",
    "Ldap3Connection",
    "Ldap3Connector",
    "SearchScope",
    "classify_bind_result",
    # TLS
    "TlsNegotiator",
    # Binder
    "AttemptState",
    "BindAttempt",
    "FailoverBinder",
    "is_anonymous",
    "should_try_next",
]
