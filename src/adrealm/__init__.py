"""
adrealm - Active Directory authentication realm

Authenticates users and resolves their groups against one or more Active
Directory domains over LDAP.

Features:
- Domain controller discovery through DNS SRV records (site-aware)
- LDAPS, opportunistic StartTLS or plaintext connections
- Failover across domain controllers that never retries rejected
  credentials
- tokenGroups or recursive memberOf group resolution, with automatic
  downgrade for domains that lack tokenGroups
- Single-flight TTL/size-bounded lookup cache

Example Usage:
    from returns.pipeline import is_successful
    from adrealm import ADRealm, RealmConfig

    config = RealmConfig.from_mapping({
        "domains": [{"name": "corp.example.com", "site": "HQ"}],
        "group_lookup_strategy": "AUTO",
    })
    realm = ADRealm.create(config)

    result = realm.authenticate("jdoe", "secret")
    if is_successful(result):
        user = result.unwrap()
        print(user.display_name, user.group_names)
    else:
        print(result.failure().reason)
"""

from adrealm.core.types import (
    Domain,
    FailureKind,
    GroupLookupStrategy,
    GroupRecord,
    LookupFailure,
    TrustMode,
    UserRecord,
)
from adrealm.core.config import CacheConfig, RealmConfig
from adrealm.ad.realm import ADRealm, DirectoryBackend
from adrealm.core.logging import configure_logging

__version__ = "0.1.0"

__all__ = [
    # Main API
    "ADRealm",
    "DirectoryBackend",
    "RealmConfig",
    "CacheConfig",
    "configure_logging",
    # Types
    "Domain",
    "FailureKind",
    "GroupLookupStrategy",
    "GroupRecord",
    "LookupFailure",
    "TrustMode",
    "UserRecord",
    # Metadata
    "__version__",
]
