"""
Authorization Policy
Decides whether an authenticated user may log in and which
authorization level the user holds.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import GLOBAL_READ_LEVEL, ADConfig
from .exceptions import NotAuthorized
from .groups import GroupResolver
from .session import Credentials, SessionManager


@dataclass(frozen=True)
class AuthDecision:
    granted: bool
    level: Optional[int] = None
    group: Optional[str] = None


class AuthorizationPolicy:
    """
    Applies the configured group-to-level mapping.
    """

    def __init__(self, session: SessionManager, resolver: GroupResolver, config: ADConfig):
        self.session = session
        self.resolver = resolver
        self.config = config

    def authenticate(self, credentials: Credentials) -> AuthDecision:
        """
        Bind as the user and, when group membership is required, check the
        configured groups in order until one matches.

        Args:
            credentials: Username and password

        Returns:
            AuthDecision (granted is always True; failures raise)

        Raises:
            InvalidCredentials: empty password
            BindFailed: directory rejected the credentials
            NotAuthorized: user is in none of the configured groups
        """
        self.session.bind_user(credentials)

        if not self.config.require_groupmembership:
            return AuthDecision(granted=True)

        for group, level in self.config.groups.items():
            if self.resolver.is_member(credentials.username, group):
                logging.info(f"{credentials.username} authorized through group {group}")
                return AuthDecision(granted=True, level=level, group=group)

        logging.warning(f"{credentials.username} is not in any of the required groups")
        if self.config.debug:
            raise NotAuthorized('User is not in one of the required groups or user/group is outside the base dn')
        raise NotAuthorized()

    def baseline_level(self) -> int:
        if not self.config.require_groupmembership and self.config.global_read:
            return GLOBAL_READ_LEVEL
        return 0

    def compute_level(self, username: str) -> int:
        """
        Highest level granted by any configured group the user belongs to.
        Groups that cannot be resolved count as non-membership.
        """
        level = self.baseline_level()
        for group, group_level in self.config.groups.items():
            if self.resolver.membership(username, group):
                level = max(level, group_level)
        return level
