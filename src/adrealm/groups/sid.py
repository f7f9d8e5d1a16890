"""
Windows security identifier (SID) conversion.

Binary layout (MS-DTYP 2.4.2.2):
    Revision (1 byte) | SubAuthorityCount (1 byte) |
    IdentifierAuthority (6 bytes, big-endian) |
    SubAuthority[SubAuthorityCount] (4 bytes each, little-endian)
"""

from __future__ import annotations

import struct
from typing import Optional

from ldap3.utils.conv import escape_bytes


def binary_to_sid(binary_sid: bytes) -> Optional[str]:
    """
    Convert a binary SID (objectSid / tokenGroups value) to "S-1-5-..." form.

    Returns None if the value is not a well-formed SID.
    """
    if not binary_sid or len(binary_sid) < 8:
        return None

    revision = binary_sid[0]
    count = binary_sid[1]
    if len(binary_sid) != 8 + 4 * count:
        return None

    authority = struct.unpack(">Q", b"\x00\x00" + binary_sid[2:8])[0]
    subauthorities = struct.unpack(f"<{count}I", binary_sid[8:])

    return "-".join(["S", str(revision), str(authority), *map(str, subauthorities)])


def sid_to_binary(sid: str) -> Optional[bytes]:
    """Convert "S-1-5-..." back to its binary form, None if malformed."""
    if not sid.upper().startswith("S-"):
        return None
    try:
        parts = [int(x) for x in sid[2:].split("-")]
    except ValueError:
        return None
    if len(parts) < 2:
        return None

    revision, authority, subauthorities = parts[0], parts[1], parts[2:]
    try:
        return (
            struct.pack("BB", revision, len(subauthorities))
            + struct.pack(">Q", authority)[2:]
            + struct.pack(f"<{len(subauthorities)}I", *subauthorities)
        )
    except struct.error:
        return None


def sid_filter_value(binary_sid: bytes) -> str:
    """Escape a binary SID for use in an LDAP filter."""
    return escape_bytes(binary_sid)
