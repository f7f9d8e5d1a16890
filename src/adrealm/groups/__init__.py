"""
adrealm Groups Module

Group membership resolution once a bind has succeeded.

Components:
- strategy: tokenGroups, recursive and automatic resolvers
- sid: binary SID conversion
"""

from adrealm.groups.sid import binary_to_sid, sid_to_binary
from adrealm.groups.strategy import (
    AutoResolver,
    GroupResolver,
    RecursiveResolver,
    TokenGroupsResolver,
    create_group_resolver,
)

__all__ = [
    "AutoResolver",
    "GroupResolver",
    "RecursiveResolver",
    "TokenGroupsResolver",
    "create_group_resolver",
    "binary_to_sid",
    "sid_to_binary",
]
