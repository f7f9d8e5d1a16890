"""
adrealm Domain Coordinator

Runs authentication and lookups across the configured domains.

Domains are tried one after another in configured order, never in
parallel. A failure in one domain is recorded and the next domain is
tried: the same user name can be valid in domain B while unknown, or
wrongly credentialed, in domain A.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, List, Optional, Sequence, Set, Tuple

import attrs
import structlog
from ldap3.utils.conv import escape_filter_chars
from returns.pipeline import is_successful
from returns.result import Failure, Result, Success

from adrealm.ad.cache import CacheKey, LookupCache
from adrealm.core.config import FIPS_MIN_PASSWORD_LENGTH, RealmConfig
from adrealm.core.exceptions import DirectoryError, NoDomainsConfigured, NoServersFound
from adrealm.core.types import (
    BoundConnection,
    Domain,
    FailureKind,
    GroupRecord,
    LookupFailure,
    Rejected,
    ServerCandidate,
    UserRecord,
)
from adrealm.discovery.servers import ServerDiscovery
from adrealm.groups.sid import binary_to_sid
from adrealm.groups.strategy import (
    GROUP_ATTRIBUTES,
    GroupResolver,
    effective_strategy,
    filter_relevant,
    group_record,
)
from adrealm.transport.binder import FailoverBinder
from adrealm.transport.directory import DirectoryConnection, DirectoryEntry

logger = structlog.get_logger()

USER_ATTRIBUTES = (
    "sAMAccountName",
    "userPrincipalName",
    "displayName",
    "mail",
    "objectSid",
    "memberOf",
)


def split_username(username: str) -> Tuple[str, Optional[str]]:
    """
    Split a user name into (account name, domain hint).

    Examples:
        "jdoe"                  -> ("jdoe", None)
        "jdoe@corp.example.com" -> ("jdoe", "corp.example.com")
        "CORP\\jdoe"            -> ("jdoe", "CORP")
    """
    username = username.strip()
    if "\\" in username:
        hint, name = username.split("\\", 1)
        return name, hint or None
    if "@" in username:
        name, hint = username.rsplit("@", 1)
        return name, hint or None
    return username, None


def user_filter(attribute: str, value: str) -> str:
    return f"(&(objectCategory=person)(objectClass=user)({attribute}={escape_filter_chars(value)}))"


def login_key(username: str) -> str:
    """
    Cache identity of a login name.

    A UPN is kept whole, its prefix need not match the sAMAccountName.
    Other forms reduce to the account name.
    """
    username = username.strip()
    if "@" in username:
        return username
    return split_username(username)[0]


@attrs.define
class DomainCoordinator:
    """
    Network directory backend spanning one or more domains.

    Example:
        coordinator = DomainCoordinator(config, discovery, binder, resolver,
                                        user_cache, group_cache)
        result = coordinator.resolve("jdoe", "secret")
    """

    config: RealmConfig
    discovery: ServerDiscovery
    binder: FailoverBinder
    groups: GroupResolver
    user_cache: LookupCache = attrs.Factory(LookupCache)
    group_cache: LookupCache = attrs.Factory(LookupCache)
    relevant_groups: Optional[Callable[[], Iterable[str]]] = None

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def __attrs_post_init__(self) -> None:
        if not self.config.domains:
            raise NoDomainsConfigured()

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def resolve(
        self,
        username: str,
        secret: Optional[str],
        domains: Optional[Sequence[Domain]] = None,
    ) -> Result[UserRecord, LookupFailure]:
        """
        Authenticate a user across domains.

        Args:
            username: "jdoe", "jdoe@corp.example.com" or "CORP\\jdoe"
            secret: The user's password
            domains: Domains to try; defaults to the configured ones,
                narrowed to the domain named in a qualified user name

        Returns:
            Success(UserRecord) from the first domain that accepts
            Failure(LookupFailure) otherwise
        """
        rejection = self._check_password(username, secret)
        if rejection is not None:
            return Failure(rejection)

        _, hint = split_username(username)
        candidates = list(domains) if domains is not None else self.domains_for(hint)

        result = self._first_success(
            candidates,
            lambda domain: self.authenticate_in_domain(domain, username, secret),
            subject=f"user {username}",
        )
        if is_successful(result):
            user = result.unwrap()
            self._logger.info(
                "authenticated",
                username=user.username,
                domain=user.domain,
                server=str(user.server),
            )
        return result

    def authenticate(self, username: str, secret: Optional[str]) -> Result[UserRecord, LookupFailure]:
        """DirectoryBackend entry point; see resolve()."""
        return self.resolve(username, secret)

    def lookup_user(self, username: str) -> Result[UserRecord, LookupFailure]:
        """
        Look up a user with each domain's service account, without a password.

        Returns:
            Success(UserRecord) or Failure(LookupFailure)
        """
        _, hint = split_username(username)
        return self._first_success(
            self.domains_for(hint),
            lambda domain: self.user_cache.get_or_compute(
                CacheKey(domain.name, login_key(username), effective_strategy(self.groups, domain)),
                lambda: self._lookup_user_in_domain(domain, username),
                store_if=is_successful,
            ),
            subject=f"user {username}",
        )

    def lookup_group(self, group_name: str) -> Result[GroupRecord, LookupFailure]:
        """
        Look up a group by sAMAccountName or cn.

        A domain-qualified name ("admins@corp.example.com", "CORP\\admins")
        restricts the search to that domain.
        """
        name, hint = split_username(group_name)
        return self._first_success(
            self.domains_for(hint),
            lambda domain: self.group_cache.get_or_compute(
                CacheKey(domain.name, name, effective_strategy(self.groups, domain)),
                lambda: self._lookup_group_in_domain(domain, name),
                store_if=is_successful,
            ),
            subject=f"group {group_name}",
        )

    def domains_for(self, hint: Optional[str]) -> List[Domain]:
        """Domains to search, narrowed to ``hint`` when it names a configured domain."""
        if hint:
            domain = self.config.get_domain(hint)
            if domain is not None:
                return [domain]
        return list(self.config.domains)

    def authenticate_in_domain(
        self,
        domain: Domain,
        username: str,
        secret: Optional[str],
        servers: Optional[Sequence[ServerCandidate]] = None,
    ) -> Result[UserRecord, LookupFailure]:
        """
        Authenticate against a single domain.

        The bind always happens; only the post-bind user and group
        resolution is served from the cache.

        Args:
            servers: Servers to try instead of discovering them
        """
        rejection = self._check_password(username, secret)
        if rejection is not None:
            return Failure(attrs.evolve(rejection, domain=domain.name))

        principal = self.bind_principal(domain, username)

        bound = self._bind(domain, principal, secret, servers)
        if not is_successful(bound):
            return bound

        connection = bound.unwrap()
        try:
            result = self.user_cache.get_or_compute(
                CacheKey(domain.name, login_key(username), effective_strategy(self.groups, domain)),
                lambda: self._load_user(connection, domain, username),
                store_if=is_successful,
            )
        finally:
            connection.close()

        return result.map(lambda user: attrs.evolve(user, server=connection.server))

    @staticmethod
    def bind_principal(domain: Domain, username: str) -> str:
        """UPN to bind with: a UPN is used as given, bare names get the domain."""
        if "@" in username:
            return username.strip()
        name, _ = split_username(username)
        return f"{name}@{domain.name}"

    # =========================================================================
    # PER-DOMAIN STEPS
    # =========================================================================

    def _bind(
        self,
        domain: Domain,
        principal: Optional[str],
        secret: Optional[str],
        servers: Optional[Sequence[ServerCandidate]] = None,
    ) -> Result[BoundConnection, LookupFailure]:
        """Discover servers (unless given) and bind."""
        policy = self.config.security_policy(domain)

        if servers is None:
            try:
                servers = self.discovery.discover(
                    domain.name,
                    domain.site,
                    self.config.explicit_servers(domain),
                    policy,
                )
            except NoServersFound as e:
                return Failure(
                    LookupFailure(
                        kind=FailureKind.UNREACHABLE,
                        reason=f"Unable to locate any domain controller for {domain.name}",
                        cause=e,
                        domain=domain.name,
                    )
                )

        outcome = self.binder.bind(principal, secret, servers, policy)
        if is_successful(outcome):
            return outcome

        failure = outcome.failure()
        if isinstance(failure, Rejected):
            return Failure(
                LookupFailure(
                    kind=FailureKind.REJECTED,
                    reason=failure.reason,
                    cause=failure,
                    domain=domain.name,
                )
            )
        return Failure(
            LookupFailure(
                kind=FailureKind.UNREACHABLE,
                reason=f"Unable to contact any domain controller for {domain.name}",
                cause=failure,
                domain=domain.name,
            )
        )

    def _lookup_user_in_domain(self, domain: Domain, username: str) -> Result[UserRecord, LookupFailure]:
        bound = self._bind(domain, domain.bind_principal, domain.bind_secret)
        if not is_successful(bound):
            return bound
        connection = bound.unwrap()
        try:
            return self._load_user(connection, domain, username).map(
                lambda user: attrs.evolve(user, server=connection.server)
            )
        finally:
            connection.close()

    def _lookup_group_in_domain(self, domain: Domain, name: str) -> Result[GroupRecord, LookupFailure]:
        bound = self._bind(domain, domain.bind_principal, domain.bind_secret)
        if not is_successful(bound):
            return bound
        connection = bound.unwrap()
        value = escape_filter_chars(name)
        search_filter = f"(&(objectCategory=group)(|(sAMAccountName={value})(cn={value})))"
        try:
            entries = connection.connection.search(domain.base_dn, search_filter, GROUP_ATTRIBUTES)
        except DirectoryError as e:
            return Failure(self._search_failed(domain, e))
        finally:
            connection.close()

        if not entries:
            return Failure(
                LookupFailure(
                    kind=FailureKind.NOT_FOUND,
                    reason=f"Group not found: {name}",
                    domain=domain.name,
                )
            )
        return Success(group_record(entries[0], domain))

    def _load_user(
        self,
        connection: BoundConnection,
        domain: Domain,
        username: str,
    ) -> Result[UserRecord, LookupFailure]:
        """Search the user entry and its groups over a bound connection."""
        conn: DirectoryConnection = connection.connection
        name, _ = split_username(username)

        try:
            entries = self._find_user(conn, domain, username)
            if not entries:
                return Failure(
                    LookupFailure(
                        kind=FailureKind.NOT_FOUND,
                        reason=(
                            "Authentication was successful but cannot locate the user "
                            f"information for {username}"
                        ),
                        domain=domain.name,
                    )
                )
            if len(entries) > 1:
                self._logger.warning(
                    "ambiguous_user",
                    username=username,
                    domain=domain.name,
                    matches=[e.dn for e in entries],
                )
                return Failure(
                    LookupFailure(
                        kind=FailureKind.NOT_FOUND,
                        reason=f"User name {username} matches more than one entry",
                        domain=domain.name,
                    )
                )
            entry = entries[0]
            groups = self.groups.resolve(conn, entry, domain)
        except DirectoryError as e:
            return Failure(self._search_failed(domain, e))

        groups = filter_relevant(groups, self._relevant_names())
        raw_sid = entry.first("objectSid")

        return Success(
            UserRecord(
                username=str(entry.first("sAMAccountName") or name),
                dn=entry.dn,
                domain=domain.name,
                display_name=entry.first("displayName"),
                email=entry.first("mail"),
                sid=binary_to_sid(raw_sid) if isinstance(raw_sid, bytes) else raw_sid,
                groups=tuple(groups),
                server=connection.server,
            )
        )

    def _find_user(self, conn: DirectoryConnection, domain: Domain, username: str) -> List[DirectoryEntry]:
        """
        Entries matching a login name.

        A UPN is matched against userPrincipalName only. The implicit UPN
        (sAMAccountName@domain) is tried when no entry carries the UPN and
        the suffix is this domain's name.
        """
        name, suffix = split_username(username)
        if "@" in username:
            upn = username.strip()
            entries = conn.search(domain.base_dn, user_filter("userPrincipalName", upn), USER_ATTRIBUTES)
            if entries or (suffix or "").lower() != domain.name.lower():
                return entries
        return conn.search(domain.base_dn, user_filter("sAMAccountName", name), USER_ATTRIBUTES)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _check_password(self, username: str, secret: Optional[str]) -> Optional[LookupFailure]:
        """Reject passwords that must never reach a server."""
        if not secret:
            # an empty password would turn into an anonymous bind
            return LookupFailure(
                kind=FailureKind.REJECTED,
                reason=f"Failed to retrieve user {username}: empty password",
            )
        if "\x00" in secret:
            return LookupFailure(
                kind=FailureKind.REJECTED,
                reason=f"Failed to retrieve user {username}: invalid password",
            )
        if self.config.fips_mode and len(secret) < FIPS_MIN_PASSWORD_LENGTH:
            self._logger.error("password_too_short_fips", username=username)
            return LookupFailure(
                kind=FailureKind.REJECTED,
                reason=(
                    "Password must be at least "
                    f"{FIPS_MIN_PASSWORD_LENGTH} characters long in FIPS mode"
                ),
            )
        return None

    def _relevant_names(self) -> Optional[Set[str]]:
        if not self.config.remove_irrelevant_groups or self.relevant_groups is None:
            return None
        return set(self.relevant_groups())

    def _search_failed(self, domain: Domain, error: DirectoryError) -> LookupFailure:
        self._logger.warning("directory_search_failed", domain=domain.name, error=str(error))
        return LookupFailure(
            kind=FailureKind.UNREACHABLE,
            reason=f"Directory search failed in {domain.name}",
            cause=error,
            domain=domain.name,
        )

    def _first_success(
        self,
        domains: Sequence[Domain],
        attempt: Callable[[Domain], Result[Any, LookupFailure]],
        subject: str,
    ) -> Result[Any, LookupFailure]:
        """Try domains in order and return the first success, or the aggregate failure."""
        failures: List[LookupFailure] = []
        for domain in domains:
            result = attempt(domain)
            if is_successful(result):
                return result
            failure = result.failure()
            self._logger.info(
                "domain_lookup_failed",
                subject=subject,
                domain=domain.name,
                kind=failure.kind.name,
                reason=failure.reason,
            )
            failures.append(failure)
        return Failure(aggregate_failures(failures, subject))


def aggregate_failures(failures: Sequence[LookupFailure], subject: str) -> LookupFailure:
    """
    Combine per-domain failures into one.

    All unreachable -> UNREACHABLE with every cause attached. Otherwise the
    result is NOT_FOUND, with the most specific failure as cause: a
    rejection beats "not found", which beats "unreachable".
    """
    if not failures:
        return LookupFailure(kind=FailureKind.NOT_FOUND, reason=f"No domain to search for {subject}")

    if all(f.kind is FailureKind.UNREACHABLE for f in failures):
        if len(failures) == 1:
            return failures[0]
        names = ", ".join(f.domain or "?" for f in failures)
        return LookupFailure(
            kind=FailureKind.UNREACHABLE,
            reason=f"Unable to contact any domain controller for {names}",
            cause=tuple(failures),
        )

    best = max(failures, key=lambda f: f.specificity)
    return LookupFailure(
        kind=FailureKind.NOT_FOUND,
        reason=best.reason,
        cause=best,
        domain=best.domain,
    )
