"""
Identity Mapper
Turns directory user entries into local user records and maps numeric
local user ids back to directory identities.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional


from .config import ADConfig
from .exceptions import UserNotFound
from .filters import FilterBuilder
from .groups import GroupResolver
from .ldap_operations import DirectoryEntry, LDAPOperations
from .policy import AuthorizationPolicy
from .sid_utils import SecurityIdentifier, SIDConverter

USER_ATTRIBUTES = ['sAMAccountName', 'displayName', 'objectSid', 'mail']


@dataclass(frozen=True)
class UserRecord:
    user_id: int
    username: str
    realname: str
    email: str
    level: int
    descr: str = ''
    can_modify_passwd: bool = False


def cn_from_dn(dn: str) -> str:
    """
    Value of the leading RDN of a DN ('CN=Smith\\, John,OU=x' -> 'Smith, John').
    """
    rdn = ''
    escaped = False
    for char in dn:
        if escaped:
            rdn += char
            escaped = False
        elif char == '\\':
            escaped = True
        elif char == ',':
            break
        else:
            rdn += char
    _, _, value = rdn.partition('=')
    return value.strip()


class IdentityMapper:
    """
    Maps directory users to UserRecord objects.
    """

    def __init__(self, ldap_ops: LDAPOperations, filters: FilterBuilder,
                 resolver: GroupResolver, policy: AuthorizationPolicy, config: ADConfig):
        self.ldap_ops = ldap_ops
        self.filters = filters
        self.resolver = resolver
        self.policy = policy
        self.config = config

    @staticmethod
    def sid_of(entry: DirectoryEntry) -> SecurityIdentifier:
        sid_bytes = entry.first_raw('objectSid')
        if sid_bytes is None:
            raise UserNotFound(f"Entry {entry.dn} has no objectSid")
        try:
            return SIDConverter.decode(sid_bytes)
        except ValueError as e:
            raise UserNotFound(f"Entry {entry.dn} has an unreadable objectSid: {e}") from e

    def rid_of(self, entry: DirectoryEntry) -> int:
        try:
            return SIDConverter.to_rid(self.sid_of(entry))
        except ValueError as e:
            raise UserNotFound(f"Entry {entry.dn} has no RID: {e}") from e

    def map_entry_to_user(self, entry: DirectoryEntry) -> UserRecord:
        """
        Build a UserRecord from an entry carrying objectSid, sAMAccountName,
        displayName and mail.
        """
        username = entry.first('sAMAccountName')
        if not username:
            raise UserNotFound(f"Entry {entry.dn} has no sAMAccountName")

        return UserRecord(
            user_id=self.rid_of(entry),
            username=username,
            realname=entry.first('displayName', ''),
            email=entry.first('mail', ''),
            level=self.policy.compute_level(username),
        )

    def find_user(self, username: str, attributes: List[str]) -> Optional[DirectoryEntry]:
        entries = self.ldap_ops.search(self.filters.user(username), attributes)
        return entries[0] if entries else None

    def get_userid(self, username: str) -> int:
        """
        Local user id of a directory user, or -1 if the user does not exist.
        """
        entry = self.find_user(username, ['objectSid'])
        if entry is None:
            return -1
        return self.rid_of(entry)

    def domain_sid(self) -> SecurityIdentifier:
        """
        SID of the domain, read from the domain-component suffix of the base DN.
        """
        domain_dn = SIDConverter.domain_dn_from_base(self.config.base_dn)
        entry = self.ldap_ops.read_one(domain_dn, '(objectClass=*)', ['objectSid'])
        if entry is None:
            raise UserNotFound(f"Unable to read the domain SID from {domain_dn}")
        return self.sid_of(entry)

    def lookup_by_id(self, user_id: int) -> Optional[UserRecord]:
        """
        Find the directory user whose SID is the domain SID plus user_id.
        """
        user_id = int(user_id)
        if not 0 <= user_id <= 0xFFFFFFFF:
            return None

        domain = self.domain_sid()
        sid = SecurityIdentifier(domain.revision, domain.authority, domain.sub_authorities + (user_id,))
        sid_bytes = SIDConverter.encode(sid)

        entries = self.ldap_ops.search(self.filters.person_by_sid(sid_bytes), USER_ATTRIBUTES)
        if not entries or not entries[0].first('sAMAccountName'):
            logging.debug(f"No directory user with SID {sid}")
            return None
        return self.map_entry_to_user(entries[0])

    def list_all(self) -> List[UserRecord]:
        """
        Direct members of every configured group, one record per account name.
        """
        users: Dict[str, UserRecord] = {}
        for group_dn in self.resolver.list_configured_group_dns():
            if not group_dn:
                continue
            for entry in self.ldap_ops.search(self.filters.direct_members(group_dn), USER_ATTRIBUTES):
                username = entry.first('sAMAccountName')
                if not username or username in users:
                    continue
                try:
                    users[username] = self.map_entry_to_user(entry)
                except UserNotFound as e:
                    logging.warning(f"Skipping {entry.dn}: {e}")
        return list(users.values())

    def get_email(self, username: str) -> Optional[str]:
        entry = self.find_user(username, ['mail'])
        return entry.first('mail') if entry else None

    def get_fullname(self, username: str) -> str:
        entry = self.find_user(username, ['name'])
        if entry is None:
            return username
        return entry.first('name') or cn_from_dn(entry.dn) or username
