"""
Active Directory Authorizer
Orchestrates the session, group resolution, authorization policy and
identity mapping behind the operations the application calls.
"""

import logging
from typing import Callable, List, Optional

from ldap3 import Connection

from .config import ADConfig
from .exceptions import AuthenticationError, InvalidCredentials, UserNotFound
from .filters import FilterBuilder
from .groups import GroupResolver
from .identity import IdentityMapper, UserRecord
from .ldap_operations import LDAPOperations
from .policy import AuthorizationPolicy
from .session import Credentials, SessionManager
from .store import PermissionStore

RememberMeValidator = Callable[[str, str], bool]


class ActiveDirectoryAuthorizer:
    """
    Authenticates and authorizes application users against Active Directory.

    One instance owns one directory connection; use separate instances
    for concurrent callers.
    """

    def __init__(self, config: ADConfig, connection: Optional[Connection] = None,
                 remember_me: Optional[RememberMeValidator] = None,
                 permission_store: Optional[PermissionStore] = None):
        """
        Initialize the authorizer.

        Args:
            config: Authorizer configuration
            connection: Pre-built directory connection (created from config when omitted)
            remember_me: Validator for remember-me tokens, called as (session_id, token)
            permission_store: Local permission tables cleaned up by delete_user
        """
        self.config = config
        self.remember_me = remember_me
        self.permission_store = permission_store

        self.session = SessionManager(config, connection)
        self.filters = FilterBuilder(config)
        self.ldap_ops = LDAPOperations(self.session, config.base_dn)
        self.groups = GroupResolver(self.ldap_ops, self.filters, config)
        self.policy = AuthorizationPolicy(self.session, self.groups, config)
        self.identity = IdentityMapper(self.ldap_ops, self.filters, self.groups, self.policy, config)

        logging.info(f"Initialized authorizer for {config.domain} ({config.url})")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.disconnect()

    def disconnect(self):
        self.session.disconnect()

    def authenticate(self, username: str, password: str) -> bool:
        """
        Verify a username and password.

        Returns:
            True when the user may log in

        Raises:
            AuthenticationError: (or a subclass) when the user may not log in
        """
        decision = self.policy.authenticate(Credentials(username=username or '', password=password or ''))
        return decision.granted

    def reauthenticate(self, session_id: str, token: str) -> bool:
        """
        Re-establish a session from a remember-me token '<username>|<hash>'.

        Returns:
            True if the token is valid for an existing directory user
        """
        if not self.session.ensure_bound(allow_anonymous=False, force=True):
            return False

        session_id = (session_id or '').strip()
        token = (token or '').strip()
        username, separator, _ = token.partition('|')
        if not separator or not username:
            raise InvalidCredentials('Malformed remember-me token')

        if not self.user_exists(username):
            if self.config.debug:
                raise UserNotFound(f"{username} is not a valid AD user")
            raise AuthenticationError()

        if self.remember_me is None:
            logging.warning("No remember-me validator configured, refusing token")
            return False

        return bool(self.remember_me(session_id, token))

    def user_exists(self, username: str) -> bool:
        return self.identity.find_user(username, ['sAMAccountName']) is not None

    def get_userlevel(self, username: str) -> int:
        return self.policy.compute_level(username)

    def get_userid(self, username: str) -> int:
        return self.identity.get_userid(username)

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        return self.identity.lookup_by_id(user_id)

    def get_userlist(self) -> List[UserRecord]:
        return self.identity.list_all()

    def get_email(self, username: str) -> Optional[str]:
        return self.identity.get_email(username)

    def get_fullname(self, username: str) -> str:
        return self.identity.get_fullname(username)

    def delete_user(self, user_id: int) -> int:
        """
        Remove local permissions and preferences of a user. The directory
        object itself is left untouched.

        Returns:
            Number of local rows removed
        """
        if self.permission_store is None:
            logging.warning(f"No permission store configured, nothing removed for user {user_id}")
            return 0
        return self.permission_store.delete_user(user_id)
