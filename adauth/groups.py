"""
Group Resolver
Resolves group names to distinguished names and checks direct and
nested group membership.
"""

import logging
from typing import List, Optional

from .config import DEFAULT_GROUP, ADConfig
from .exceptions import (
    AmbiguousGroup,
    BindFailed,
    DirectoryUnavailable,
    GroupNotFound,
    NotAuthorized,
)
from .filters import FilterBuilder
from .ldap_operations import DirectoryEntry, LDAPOperations


class GroupResolver:
    """
    Answers group questions for the authorizer.

    Resolution failures are raised with their specific reason only when
    debug is enabled; otherwise they surface as a bare NotAuthorized.
    """

    def __init__(self, ldap_ops: LDAPOperations, filters: FilterBuilder, config: ADConfig):
        self.ldap_ops = ldap_ops
        self.filters = filters
        self.config = config

    def _fail(self, error: Exception):
        if self.config.debug:
            raise error
        raise NotAuthorized() from error

    def find_group(self, group_name: str) -> DirectoryEntry:
        """
        Resolve a group name to exactly one group entry.

        Raises:
            GroupNotFound: no group matched (debug only)
            AmbiguousGroup: more than one group matched (debug only)
            DirectoryUnavailable: the query failed (debug only)
            NotAuthorized: any of the above with debug off
        """
        search_filter = self.filters.group(group_name)
        try:
            entries = self.ldap_ops.search(search_filter, ['cn'])
        except (BindFailed, DirectoryUnavailable) as e:
            logging.error(f"Group lookup for {group_name} failed: {e}")
            self._fail(DirectoryUnavailable(f"LDAP query failed for group '{group_name}' using filter '{search_filter}'"))

        if not entries:
            logging.warning(f"Group {group_name} not found")
            self._fail(GroupNotFound(f"Failed to find group matching '{group_name}' using filter '{search_filter}'"))
        if len(entries) > 1:
            logging.warning(f"Group name {group_name} matched {len(entries)} groups")
            self._fail(AmbiguousGroup(f"Multiple groups returned for '{group_name}' using filter '{search_filter}'"))

        return entries[0]

    def is_member(self, username: str, group_name: str) -> bool:
        """
        Check whether a user belongs to a group, directly or through any
        number of nested groups.

        Args:
            username: sAMAccountName of the user
            group_name: Name of the group

        Returns:
            True if the user is a member
        """
        group_dn = self.find_group(group_name).dn

        try:
            entries = self.ldap_ops.search(self.filters.user_in_group(username, group_dn), ['distinguishedName'])
        except (BindFailed, DirectoryUnavailable) as e:
            logging.error(f"Membership query for {username} in {group_name} failed: {e}")
            self._fail(e)

        member = len(entries) > 0
        logging.debug(f"{username} {'is' if member else 'is not'} a member of {group_name}")
        return member

    def membership(self, username: str, group_name: str) -> Optional[bool]:
        """
        Like is_member, but returns None when the group cannot be resolved
        or the query fails.
        """
        try:
            return self.is_member(username, group_name)
        except (NotAuthorized, DirectoryUnavailable, BindFailed) as e:
            logging.debug(f"Skipping group {group_name} for {username}: {e}")
            return None

    def resolve_dn(self, sam_account_name: str) -> Optional[str]:
        """
        Retrieve the distinguished name of a group by name.

        Returns:
            Distinguished name, or None if not found
        """
        entries = self.ldap_ops.search(self.filters.group(sam_account_name), ['distinguishedName'])
        if not entries:
            return None
        return entries[0].dn

    def configured_group_names(self) -> List[str]:
        names = []
        if self.config.group and self.config.group != DEFAULT_GROUP:
            names.append(self.config.group)
        names.extend(self.config.groups)
        if not names:
            names.append(DEFAULT_GROUP)
        return names

    def list_configured_group_dns(self) -> List[str]:
        """
        Distinguished names of every configured group.

        Groups that cannot be resolved are returned as an empty string.
        """
        group_dns = []
        for name in self.configured_group_names():
            dn = self.resolve_dn(name)
            if dn is None:
                logging.warning(f"Configured group {name} could not be resolved")
                dn = ''
            group_dns.append(dn)
        return group_dns
