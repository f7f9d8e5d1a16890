"""
adrealm Exception Types

Custom exceptions for discovery, transport and configuration errors.

Exceptions are raised inside the discovery and transport layers. The
binder and coordinator turn them into explicit Result values, so retry
decisions never depend on exception classes.
"""

from typing import Any, Dict, Optional


class ADRealmError(Exception):
    """Base exception for all adrealm errors."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigurationError(ADRealmError):
    """
    Invalid configuration.

    Raised at setup time (malformed server list, FIPS policy violation,
    duplicate domains). Never retried.
    """

    pass


class NoDomainsConfigured(ConfigurationError):
    """No domain is configured and no native backend is usable."""

    def __init__(self, message: str = "No Active Directory domain configured") -> None:
        super().__init__(message)


class DiscoveryError(ADRealmError):
    """Base class for domain controller discovery errors."""

    pass


class DnsLookupError(DiscoveryError):
    """
    A DNS query failed.

    Covers NXDOMAIN, empty answers, unreachable name servers and
    resolver timeouts.
    """

    def __init__(self, name: str, message: str) -> None:
        super().__init__(message)
        self.name = name


class NoServersFound(DiscoveryError):
    """
    No SRV record was found for a domain and no explicit list was set.

    The last lookup error, if any, is kept on ``cause`` for diagnostics.
    """

    def __init__(self, domain: str, query: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"No SRV record found for {query}")
        self.domain = domain
        self.query = query
        self.cause = cause


class DirectoryError(ADRealmError):
    """
    Directory operation failed for a reason other than bad credentials.

    Connect failures, timeouts and LDAP protocol errors all end up here.
    The raw LDAP result, when there is one, is kept on ``result``.
    """

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        result: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code)
        self.result = result or {}


class TlsNegotiationFailed(DirectoryError):
    """
    TLS could not be established while TLS was mandatory.

    Also raised by directory connections when a StartTLS upgrade is
    refused; the negotiator decides whether that is fatal.
    """

    pass


class GroupLookupUnsupported(DirectoryError):
    """
    The server cannot answer a group lookup with the requested strategy.

    Typically the tokenGroups attribute is missing or unreadable.
    """

    pass


class StateError(ADRealmError):
    """
    Invalid state transition.

    An event was delivered to a bind attempt in a state that does not
    accept it.
    """

    pass


class InvariantViolation(ADRealmError):
    """
    A bind attempt invariant was violated.

    This indicates a programming error, for instance a connection left
    open after a rejected bind.
    """

    pass
