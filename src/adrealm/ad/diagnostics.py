"""
adrealm Diagnostics

Human-readable reports for checking a realm configuration: which servers
were discovered for each domain, and what happened when authenticating
against each of them in turn.
"""

from __future__ import annotations

from typing import Any, List, Optional

import attrs
import structlog
from returns.pipeline import is_successful

from adrealm.ad.coordinator import DomainCoordinator, split_username
from adrealm.core.exceptions import DnsLookupError, NoServersFound
from adrealm.core.types import LookupFailure, UserRecord
from adrealm.discovery.dns import DnsLookup

logger = structlog.get_logger()


def describe_failure(failure: LookupFailure) -> str:
    text = f"{failure.kind.name}: {failure.reason}"
    if failure.cause is not None and not isinstance(failure.cause, tuple):
        text += f" ({failure.cause})"
    return text


def describe_user(user: UserRecord) -> str:
    groups = ", ".join(user.group_names) or "none"
    return f"Authenticated as {user.username} ({user.dn}), groups: {groups}"


@attrs.define
class RealmDiagnostics:
    """
    Connection and authentication test for a network realm.

    Every discovered server is tried on its own, so a report shows a
    line per domain controller rather than only the first one that
    answered.
    """

    coordinator: DomainCoordinator
    dns: DnsLookup

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def diagnose(self, username: Optional[str], secret: Optional[str]) -> str:
        """
        Try every server of every configured domain.

        With no username only discovery is reported.
        """
        config = self.coordinator.config
        lines: List[str] = []

        hint = split_username(username)[1] if username else None
        for domain in self.coordinator.domains_for(hint):
            lines.append(f"Domain={domain.name} site={domain.site or '-'}")
            policy = config.security_policy(domain)
            try:
                servers = self.coordinator.discovery.discover(
                    domain.name,
                    domain.site,
                    config.explicit_servers(domain),
                    policy,
                )
            except NoServersFound as e:
                lines.append(f"No domain controller found: {e}")
                continue

            lines.append("Domain controllers: " + ", ".join(str(s) for s in servers))
            lines.append(f"Connection security: {policy.tls_mode.name}, trust {policy.trust_mode.name}")

            if not username:
                continue

            for server in servers:
                lines.append(f"Trying {server}")
                result = self.coordinator.authenticate_in_domain(
                    domain, username, secret, servers=[server]
                )
                if is_successful(result):
                    lines.append("  " + describe_user(result.unwrap()))
                else:
                    lines.append("  Failed: " + describe_failure(result.failure()))

        self._logger.info("diagnostics_completed", username=username, lines=len(lines))
        return "\n".join(lines)

    def domain_health(self, domain_name: str) -> List[str]:
        """
        Name servers of a domain, one report line each.

        Raises:
            DnsLookupError: If the NS lookup fails
        """
        try:
            servers = self.dns.query_name_servers(domain_name)
        except DnsLookupError:
            self._logger.warning("domain_health_failed", domain=domain_name)
            raise
        return [f"NS: {server}" for server in servers]
