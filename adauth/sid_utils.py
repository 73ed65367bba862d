"""
SID Conversion Utilities
Handles conversion between binary and string SID representations.
"""

import re
import struct
from typing import NamedTuple, Tuple


class SecurityIdentifier(NamedTuple):
    """
    Parsed security identifier.
    """

    revision: int
    authority: int
    sub_authorities: Tuple[int, ...]

    @property
    def rid(self) -> int:
        """Relative identifier, the last sub-authority."""
        if not self.sub_authorities:
            raise ValueError("SID has no sub-authorities")
        return self.sub_authorities[-1]

    def __str__(self) -> str:
        sid = f"S-{self.revision}-{self.authority}"
        for sub_authority in self.sub_authorities:
            sid += f"-{sub_authority}"
        return sid


class SIDConverter:
    """
    Utility class for converting between binary and string SID formats.
    """

    HEADER_LENGTH = 8

    @staticmethod
    def decode(sid_bytes: bytes) -> SecurityIdentifier:
        """
        Parse a binary SID as stored in the objectSid attribute.

        Layout: revision (1 byte), sub-authority count (1 byte),
        identifier authority (6 bytes, big-endian), then count
        sub-authorities (4 bytes each, little-endian).

        Args:
            sid_bytes: Binary SID data

        Returns:
            SecurityIdentifier

        Raises:
            ValueError: if the data is truncated
        """
        if len(sid_bytes) < SIDConverter.HEADER_LENGTH:
            raise ValueError(f"SID too short: {len(sid_bytes)} bytes")

        revision = sid_bytes[0]
        sub_authority_count = sid_bytes[1]
        identifier_authority = int.from_bytes(sid_bytes[2:8], byteorder='big')

        expected = SIDConverter.HEADER_LENGTH + 4 * sub_authority_count
        if len(sid_bytes) < expected:
            raise ValueError(f"SID truncated: expected {expected} bytes, got {len(sid_bytes)}")

        sub_authorities = struct.unpack(f'<{sub_authority_count}I', sid_bytes[8:expected])
        return SecurityIdentifier(revision, identifier_authority, tuple(sub_authorities))

    @staticmethod
    def encode(sid: SecurityIdentifier) -> bytes:
        """
        Binary form of a SID, the inverse of decode().

        Raises:
            struct.error, OverflowError: if a component is out of range
        """
        sid_bytes = struct.pack('BB', sid.revision, len(sid.sub_authorities))
        sid_bytes += sid.authority.to_bytes(6, byteorder='big')
        for sub_authority in sid.sub_authorities:
            sid_bytes += struct.pack('<I', sub_authority)
        return sid_bytes

    @staticmethod
    def to_rid(sid) -> int:
        """
        Extract the RID from a SID given as bytes, string or SecurityIdentifier.
        """
        if isinstance(sid, (bytes, bytearray)):
            sid = SIDConverter.decode(bytes(sid))
        elif isinstance(sid, str):
            sid = SIDConverter.parse(sid)
        return sid.rid

    @staticmethod
    def parse(sid_string: str) -> SecurityIdentifier:
        """
        Parse the canonical string form of a SID.

        Raises:
            ValueError: if the string is not a SID
        """
        parts = sid_string.strip().split('-')
        if len(parts) < 3 or parts[0].upper() != 'S':
            raise ValueError(f"Invalid SID format: {sid_string!r}")

        revision = int(parts[1])
        identifier_authority = int(parts[2])
        sub_authorities = tuple(int(x) for x in parts[3:])
        return SecurityIdentifier(revision, identifier_authority, sub_authorities)

    @staticmethod
    def domain_dn_from_base(base_dn: str) -> str:
        """
        Strip a base DN down to its domain components.

        'OU=Staff,DC=example,DC=com' becomes 'DC=example,DC=com'.
        """
        return re.sub(r'^.*?DC=', 'DC=', base_dn, count=1, flags=re.IGNORECASE)
