"""
LDAP Operations
Runs searches and reads against Active Directory and normalizes the
results into DirectoryEntry snapshots.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ldap3 import BASE, SUBTREE
from ldap3.core.exceptions import LDAPException

from .exceptions import BindFailed, DirectoryUnavailable
from .session import SessionManager

RESULT_SUCCESS = 0
RESULT_SIZE_LIMIT_EXCEEDED = 4
RESULT_NO_SUCH_OBJECT = 32


@dataclass(frozen=True)
class DirectoryEntry:
    """
    Read-only snapshot of one search result.

    Attribute names are case-insensitive; values are kept as received.
    """

    dn: str
    attributes: Dict[str, Tuple[bytes, ...]] = field(default_factory=dict)

    @classmethod
    def from_response(cls, item: dict) -> 'DirectoryEntry':
        raw = item.get('raw_attributes') or {}
        attributes = {name.lower(): tuple(_as_bytes(v) for v in values) for name, values in raw.items()}
        return cls(dn=item.get('dn', ''), attributes=attributes)

    def raw_values(self, name: str) -> Tuple[bytes, ...]:
        return self.attributes.get(name.lower(), ())

    def first_raw(self, name: str) -> Optional[bytes]:
        values = self.raw_values(name)
        return values[0] if values else None

    def values(self, name: str) -> List[str]:
        return [v.decode('utf-8', errors='replace') for v in self.raw_values(name)]

    def first(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.values(name)
        return values[0] if values else default


def _as_bytes(value) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return str(value).encode('utf-8')


class LDAPOperations:
    """
    Performs LDAP queries on Active Directory.
    """

    def __init__(self, session: SessionManager, base_dn: str):
        """
        Initialize LDAP operations handler.

        Args:
            session: Session owning the connection
            base_dn: Base distinguished name for searches
        """
        self.session = session
        self.base_dn = base_dn

    def _require_bind(self):
        if not self.session.ensure_bound():
            raise BindFailed(f"Unable to bind to {self.session.config.url}")

    def search(self, search_filter: str, attributes: Sequence[str],
               base_dn: Optional[str] = None, scope: str = SUBTREE) -> List[DirectoryEntry]:
        """
        Search the directory.

        Args:
            search_filter: Serialized search filter
            attributes: Attributes to return
            base_dn: Search base (defaults to the configured base DN)
            scope: Search scope

        Returns:
            Matching entries; empty when nothing matched

        Raises:
            DirectoryUnavailable: on transport or server errors
        """
        self._require_bind()
        base = base_dn or self.base_dn
        connection = self.session.connection

        try:
            connection.search(
                search_base=base,
                search_filter=str(search_filter),
                search_scope=scope,
                attributes=list(attributes),
            )
        except LDAPException as e:
            logging.error(f"Search under {base} failed: {e}")
            raise DirectoryUnavailable(f"Search failed for filter '{search_filter}': {e}") from e

        result = connection.result or {}
        code = result.get('result', RESULT_SUCCESS)
        if code == RESULT_NO_SUCH_OBJECT:
            logging.debug(f"Search base {base} does not exist")
            return []
        if code not in (RESULT_SUCCESS, RESULT_SIZE_LIMIT_EXCEEDED):
            description = result.get('description', code)
            logging.error(f"Search under {base} failed: {description}")
            raise DirectoryUnavailable(
                f"Search failed for filter '{search_filter}': {description} {result.get('message', '')}".rstrip()
            )

        entries = [
            DirectoryEntry.from_response(item)
            for item in (connection.response or [])
            if item.get('type') == 'searchResEntry'
        ]
        logging.debug(f"Filter {search_filter} returned {len(entries)} entries")
        return entries

    def read_one(self, dn: str, search_filter: str = '(objectClass=*)',
                 attributes: Sequence[str] = ()) -> Optional[DirectoryEntry]:
        """
        Read a single entry by DN.

        Returns:
            The entry, or None if it does not exist or does not match
        """
        entries = self.search(search_filter, attributes, base_dn=dn, scope=BASE)
        return entries[0] if entries else None
