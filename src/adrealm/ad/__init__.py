"""
adrealm Active Directory Module

High-level interface for Active Directory authentication.

Components:
- realm: ADRealm, backend selection and public API
- coordinator: Multi-domain authentication and lookups
- cache: Single-flight TTL/size lookup cache
- diagnostics: Per-server connection reports
"""

from adrealm.ad.cache import CacheKey, LookupCache
from adrealm.ad.coordinator import DomainCoordinator, aggregate_failures, split_username
from adrealm.ad.diagnostics import RealmDiagnostics
from adrealm.ad.realm import ADRealm, DirectoryBackend

__all__ = [
    "ADRealm",
    "DirectoryBackend",
    "DomainCoordinator",
    "RealmDiagnostics",
    "LookupCache",
    "CacheKey",
    "aggregate_failures",
    "split_username",
]
