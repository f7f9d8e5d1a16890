"""
adrealm Group Resolution Strategies

Resolves a bound user's group memberships.

- TOKEN_GROUPS: read the constructed tokenGroups attribute (every
  transitive security group, as SIDs) and resolve the SIDs in one search
- RECURSIVE: walk memberOf edges breadth-first, one search per group
- AUTO: TOKEN_GROUPS, permanently downgraded to RECURSIVE for a domain
  whose servers cannot serve tokenGroups
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Any, Deque, List, Optional, Protocol, Set

import attrs
import structlog

from adrealm.core.exceptions import GroupLookupUnsupported
from adrealm.core.types import Domain, GroupLookupStrategy, GroupRecord
from adrealm.groups.sid import binary_to_sid, sid_filter_value
from adrealm.transport.directory import DirectoryConnection, DirectoryEntry, SearchScope

logger = structlog.get_logger()

GROUP_ATTRIBUTES = ("cn", "sAMAccountName", "objectSid")


def group_record(entry: DirectoryEntry, domain: Domain) -> GroupRecord:
    """Build a GroupRecord from a group entry."""
    raw_sid = entry.first("objectSid")
    sid = binary_to_sid(raw_sid) if isinstance(raw_sid, bytes) else raw_sid
    name = entry.first("sAMAccountName") or entry.first("cn") or entry.dn
    return GroupRecord(name=str(name), dn=entry.dn, domain=domain.name, sid=sid)


class GroupResolver(Protocol):
    """Resolves the groups of a user entry over a bound connection."""

    def resolve(
        self,
        connection: DirectoryConnection,
        user: DirectoryEntry,
        domain: Domain,
    ) -> List[GroupRecord]:
        ...


# =============================================================================
# TOKEN GROUPS
# =============================================================================


@attrs.define
class TokenGroupsResolver:
    """
    Group lookup through the tokenGroups attribute.

    tokenGroups is a constructed attribute and is only returned by a
    base-scope search on the user object.
    """

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def resolve(
        self,
        connection: DirectoryConnection,
        user: DirectoryEntry,
        domain: Domain,
    ) -> List[GroupRecord]:
        entries = connection.search(user.dn, "(objectClass=*)", ["tokenGroups"], SearchScope.BASE)
        if not entries or not entries[0].has("tokenGroups"):
            raise GroupLookupUnsupported(f"tokenGroups not available for {user.dn}")

        sids = entries[0].get("tokenGroups")
        if not all(isinstance(value, bytes) for value in sids):
            raise GroupLookupUnsupported(f"tokenGroups of {user.dn} is not binary")
        if not sids:
            return []

        search_filter = "(|{})".format(
            "".join(f"(objectSid={sid_filter_value(sid)})" for sid in sids)
        )
        groups = connection.search(domain.base_dn, search_filter, GROUP_ATTRIBUTES)

        seen: Set[str] = set()
        result = []
        for entry in groups:
            record = group_record(entry, domain)
            key = record.sid or record.dn.lower()
            if key in seen:
                continue
            seen.add(key)
            result.append(record)

        self._logger.debug(
            "token_groups_resolved",
            user=user.dn,
            sids=len(sids),
            groups=len(result),
        )
        return result


# =============================================================================
# RECURSIVE
# =============================================================================


@attrs.define
class RecursiveResolver:
    """
    Group lookup by walking memberOf breadth-first.

    Groups reached through several paths are reported once; cycles in the
    membership graph are cut by remembering visited DNs and SIDs.
    """

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def resolve(
        self,
        connection: DirectoryConnection,
        user: DirectoryEntry,
        domain: Domain,
    ) -> List[GroupRecord]:
        queue: Deque[str] = deque(user.get("memberOf"))
        visited: Set[str] = set()
        seen_sids: Set[str] = set()
        result: List[GroupRecord] = []
        searches = 0

        while queue:
            dn = queue.popleft()
            if dn.lower() in visited:
                continue
            visited.add(dn.lower())

            entries = connection.search(
                dn, "(objectClass=group)", [*GROUP_ATTRIBUTES, "memberOf"], SearchScope.BASE
            )
            searches += 1
            if not entries:
                continue

            entry = entries[0]
            record = group_record(entry, domain)
            if record.sid:
                if record.sid in seen_sids:
                    continue
                seen_sids.add(record.sid)
            result.append(record)

            for parent in entry.get("memberOf"):
                if parent.lower() not in visited:
                    queue.append(parent)

        self._logger.debug(
            "recursive_groups_resolved",
            user=user.dn,
            searches=searches,
            groups=len(result),
        )
        return result


# =============================================================================
# AUTO
# =============================================================================


@attrs.define
class AutoResolver:
    """
    tokenGroups first, recursive for domains that do not support it.

    The downgrade is one-way and lasts as long as this resolver. Only a
    GroupLookupUnsupported error downgrades; transient directory errors
    propagate unchanged.
    """

    token_groups: TokenGroupsResolver = attrs.Factory(TokenGroupsResolver)
    recursive: RecursiveResolver = attrs.Factory(RecursiveResolver)

    _downgraded: Set[str] = attrs.Factory(set)
    _lock: threading.Lock = attrs.Factory(threading.Lock)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def is_downgraded(self, domain: Domain) -> bool:
        with self._lock:
            return domain.key in self._downgraded

    def resolve(
        self,
        connection: DirectoryConnection,
        user: DirectoryEntry,
        domain: Domain,
    ) -> List[GroupRecord]:
        if not self.is_downgraded(domain):
            try:
                return self.token_groups.resolve(connection, user, domain)
            except GroupLookupUnsupported as e:
                self._downgrade(domain, e)

        return self.recursive.resolve(connection, user, domain)

    def _downgrade(self, domain: Domain, error: GroupLookupUnsupported) -> None:
        with self._lock:
            if domain.key in self._downgraded:
                return
            self._downgraded.add(domain.key)
        self._logger.warning(
            "group_lookup_downgraded",
            domain=domain.name,
            strategy=GroupLookupStrategy.RECURSIVE.name,
            error=str(error),
        )


def create_group_resolver(strategy: GroupLookupStrategy) -> GroupResolver:
    """Create the resolver for a configured strategy."""
    if strategy is GroupLookupStrategy.TOKEN_GROUPS:
        return TokenGroupsResolver()
    if strategy is GroupLookupStrategy.RECURSIVE:
        return RecursiveResolver()
    return AutoResolver()


def effective_strategy(resolver: GroupResolver, domain: Domain) -> GroupLookupStrategy:
    """The strategy a resolver currently applies to a domain."""
    if isinstance(resolver, AutoResolver):
        if resolver.is_downgraded(domain):
            return GroupLookupStrategy.RECURSIVE
        return GroupLookupStrategy.AUTO
    if isinstance(resolver, RecursiveResolver):
        return GroupLookupStrategy.RECURSIVE
    return GroupLookupStrategy.TOKEN_GROUPS


def filter_relevant(
    groups: List[GroupRecord],
    relevant: Optional[Set[str]],
) -> List[GroupRecord]:
    """Keep only groups named in ``relevant`` (case-insensitive); None keeps all."""
    if relevant is None:
        return groups
    wanted = {name.lower() for name in relevant}
    return [group for group in groups if group.name.lower() in wanted]
