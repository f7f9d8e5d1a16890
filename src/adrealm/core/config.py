"""
adrealm Configuration

Explicitly constructed realm configuration. Everything that used to be a
process-wide override (forced LDAPS, domain controller list, referral
handling, socket timeouts) is a field here and is threaded down the
discovery/bind call chain.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

import attrs
from attrs import field, validators

from adrealm.core.exceptions import ConfigurationError
from adrealm.core.types import (
    ConnectionSecurityPolicy,
    Domain,
    GroupLookupStrategy,
    TrustMode,
)
from adrealm.discovery.servers import parse_server_list

# Minimum password length accepted when running in FIPS 140 mode
FIPS_MIN_PASSWORD_LENGTH = 14


@attrs.define(frozen=True, slots=True)
class CacheConfig:
    """
    Lookup cache bounds.

    A size or TTL of 0 disables caching entirely.
    """

    size: int = field(default=0, validator=[validators.instance_of(int), validators.ge(0)])
    ttl: int = field(default=0, validator=[validators.instance_of(int), validators.ge(0)])

    @property
    def enabled(self) -> bool:
        return self.size > 0 and self.ttl > 0


def _to_domains(value: Any) -> Tuple[Domain, ...]:
    return tuple(value or ())


@attrs.define(frozen=True)
class RealmConfig:
    """
    Active Directory realm configuration.

    Attributes:
        domains: Domains in precedence order (first listed wins)
        server_override: "host:port,..." list replacing discovery for every
            domain without its own server list
        require_tls: Connect over LDAPS only
        start_tls: Opportunistically upgrade plaintext connections
        trust_mode: Certificate trust for domains without their own setting
        group_lookup_strategy: Group resolution algorithm
        cache: Lookup cache bounds
        connection_properties: Extra keyword arguments for the directory
            connection, passed through unchanged
        follow_referrals: Chase LDAP referrals
        connect_timeout: Seconds allowed for TCP connect and TLS handshake
        read_timeout: Seconds allowed for each directory response
        dns_timeout: Seconds allowed for each DNS query
        fips_mode: Enforce FIPS 140 constraints (TLS, password length)
        remove_irrelevant_groups: Drop groups the authorization layer does
            not reference
    """

    domains: Tuple[Domain, ...] = field(factory=tuple, converter=_to_domains)
    server_override: Optional[str] = None
    require_tls: bool = True
    start_tls: bool = True
    trust_mode: TrustMode = TrustMode.TRUST_ALL
    group_lookup_strategy: GroupLookupStrategy = GroupLookupStrategy.AUTO
    cache: CacheConfig = attrs.Factory(CacheConfig)
    connection_properties: Mapping[str, Any] = attrs.Factory(dict)
    follow_referrals: bool = True
    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    dns_timeout: float = 5.0
    fips_mode: bool = False
    remove_irrelevant_groups: bool = False

    def __attrs_post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """
        Check the configuration for setup-time errors.

        Raises:
            ConfigurationError: On any inconsistency
        """
        if self.fips_mode and not self.require_tls and not self.start_tls:
            raise ConfigurationError(
                "FIPS mode requires either TLS or StartTLS to be enabled"
            )

        seen = set()
        for domain in self.domains:
            if domain.key in seen:
                raise ConfigurationError(f"Duplicate domain: {domain.name}")
            seen.add(domain.key)

        policy = self.security_policy()
        for domain in self.domains:
            if domain.servers:
                parse_server_list(domain.servers, policy.default_port)
        if self.server_override:
            parse_server_list(self.server_override, policy.default_port)

        for name in ("connect_timeout", "read_timeout", "dns_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")

    def security_policy(self, domain: Optional[Domain] = None) -> ConnectionSecurityPolicy:
        """
        Connection policy for a domain.

        The domain's own trust mode wins over the realm default.
        """
        trust = self.trust_mode
        if domain is not None and domain.trust_mode is not None:
            trust = domain.trust_mode
        return ConnectionSecurityPolicy.from_flags(self.require_tls, self.start_tls, trust)

    def explicit_servers(self, domain: Domain) -> Optional[str]:
        """Server list overriding DNS discovery for a domain, if any."""
        return domain.servers or self.server_override

    def get_domain(self, name: str) -> Optional[Domain]:
        """Find a configured domain by DNS or NetBIOS-style name."""
        for domain in self.domains:
            if domain.matches(name):
                return domain
        return None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> RealmConfig:
        """
        Build a configuration from plain data (parsed YAML/JSON, env, ...).

        Enum values are given by name, e.g. ``"group_lookup_strategy":
        "RECURSIVE"``. Unknown keys raise ConfigurationError.
        """
        data = dict(data)
        kwargs: Dict[str, Any] = {}

        try:
            domains: List[Domain] = []
            for raw in data.pop("domains", None) or []:
                raw = dict(raw)
                trust = raw.pop("trust_mode", None)
                domains.append(
                    Domain(
                        trust_mode=TrustMode[trust.upper()] if trust else None,
                        **raw,
                    )
                )
            kwargs["domains"] = domains

            if "trust_mode" in data:
                kwargs["trust_mode"] = TrustMode[str(data.pop("trust_mode")).upper()]
            if "group_lookup_strategy" in data:
                kwargs["group_lookup_strategy"] = GroupLookupStrategy[
                    str(data.pop("group_lookup_strategy")).upper()
                ]
            if "cache" in data:
                cache = data.pop("cache") or {}
                kwargs["cache"] = CacheConfig(
                    size=int(cache.get("size", 0)),
                    ttl=int(cache.get("ttl", 0)),
                )

            known = {a.name for a in attrs.fields(cls)}
            unknown = set(data) - known
            if unknown:
                raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")
            kwargs.update(data)

            return cls(**kwargs)

        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
