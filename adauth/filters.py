"""
Search Filter Builder
Builds search filters as trees of typed predicates and serializes them
to RFC 4515 syntax. Assertion values are always escaped; only
administrator-configured fragments are inserted verbatim.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from ldap3.utils.conv import escape_bytes, escape_filter_chars

from .config import ADConfig, validate_filter_fragment

# LDAP_MATCHING_RULE_IN_CHAIN: walks nested group membership server-side
MATCHING_RULE_IN_CHAIN = '1.2.840.113556.1.4.1941'


class Filter:
    """Base class for filter expressions."""

    def serialize(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.serialize()


@dataclass(frozen=True)
class Equals(Filter):
    attribute: str
    value: str

    def serialize(self) -> str:
        return f"({self.attribute}={escape_filter_chars(self.value)})"


@dataclass(frozen=True)
class BinaryEquals(Filter):
    attribute: str
    value: bytes

    def serialize(self) -> str:
        return f"({self.attribute}={escape_bytes(self.value)})"


@dataclass(frozen=True)
class InChain(Filter):
    """Transitive membership test on a DN-valued attribute."""

    attribute: str
    value: str

    def serialize(self) -> str:
        return f"({self.attribute}:{MATCHING_RULE_IN_CHAIN}:={escape_filter_chars(self.value)})"


@dataclass(frozen=True)
class RawFilter(Filter):
    """Trusted fragment taken from configuration."""

    fragment: str

    def __post_init__(self):
        validate_filter_fragment(self.fragment)

    def serialize(self) -> str:
        return self.fragment.strip()


class And(Filter):
    def __init__(self, *clauses: Optional[Filter]):
        self.clauses: Tuple[Filter, ...] = tuple(c for c in clauses if c is not None)
        if not self.clauses:
            raise ValueError("And() needs at least one clause")

    def serialize(self) -> str:
        if len(self.clauses) == 1:
            return self.clauses[0].serialize()
        return '(&' + ''.join(c.serialize() for c in self.clauses) + ')'

    def __eq__(self, other):
        return isinstance(other, And) and self.clauses == other.clauses

    def __hash__(self):
        return hash(self.clauses)


class FilterBuilder:
    """
    Produces the user and group filters used by the authorizer.
    """

    NAME_ATTRIBUTE = 'sAMAccountName'
    MEMBER_OF = 'memberOf'

    def __init__(self, config: ADConfig):
        self.user_extra = RawFilter(config.user_filter) if config.user_filter else None
        self.group_extra = RawFilter(config.group_filter) if config.group_filter else None

    def user(self, username: str) -> And:
        """Filter matching exactly one user account by name."""
        return And(
            Equals('objectClass', 'user'),
            Equals(self.NAME_ATTRIBUTE, username),
            self.user_extra,
        )

    def group(self, group_name: str) -> And:
        """Filter matching a group by name."""
        return And(
            Equals('objectClass', 'group'),
            Equals(self.NAME_ATTRIBUTE, group_name),
            self.group_extra,
        )

    def user_in_group(self, username: str, group_dn: str) -> And:
        """Filter matching the user only if it is a direct or nested member of group_dn."""
        return And(
            Equals('objectClass', 'user'),
            Equals(self.NAME_ATTRIBUTE, username),
            self.user_extra,
            InChain(self.MEMBER_OF, group_dn),
        )

    def direct_members(self, group_dn: str) -> And:
        return And(
            Equals('objectCategory', 'person'),
            Equals('objectClass', 'user'),
            Equals(self.MEMBER_OF, group_dn),
            self.user_extra,
        )

    def person_by_sid(self, sid_bytes: bytes) -> And:
        return And(
            Equals('objectCategory', 'person'),
            Equals('objectClass', 'user'),
            BinaryEquals('objectSid', sid_bytes),
        )
