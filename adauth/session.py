"""
Session Manager
Owns the single directory connection of an authorizer and its bind state:
- service account bind (bind user configured)
- anonymous bind
- user credential bind
"""

import logging
import ssl
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from ldap3 import ALL, ANONYMOUS, SIMPLE, Connection, Server, Tls
from ldap3.core.exceptions import LDAPException
from ldap3.utils.log import BASIC, set_library_log_detail_level

from .config import ADConfig
from .exceptions import BindFailed, InvalidCredentials


class BindState(Enum):
    UNBOUND = 'unbound'
    BOUND_ANONYMOUS = 'anonymous'
    BOUND_SERVICE = 'service'
    BOUND_USER = 'user'


@dataclass
class Credentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


class SessionManager:
    """
    Manages the bind state of one directory connection.
    """

    def __init__(self, config: ADConfig, connection: Optional[Connection] = None):
        """
        Initialize the session.

        Args:
            config: Authorizer configuration
            connection: Pre-built connection (created from config when omitted)
        """
        self.config = config
        self.bound_as = BindState.UNBOUND
        self.bound_at: Optional[datetime] = None

        if config.debug:
            set_library_log_detail_level(BASIC)

        self.connection = connection if connection is not None else self.create_connection()

    def create_server(self) -> Server:
        """
        Create the LDAP server object from the configured URL.

        Returns:
            Server object
        """
        use_ssl = self.config.url.lower().startswith('ldaps://')

        tls_config = None
        if use_ssl:
            tls_config = Tls(
                validate=ssl.CERT_REQUIRED if self.config.check_certificates else ssl.CERT_NONE,
            )

        return Server(
            self.config.url,
            get_info=ALL,
            use_ssl=use_ssl,
            tls=tls_config,
        )

    def create_connection(self) -> Connection:
        """
        Create the unbound connection, referrals off and protocol version 3.
        """
        return Connection(
            self.create_server(),
            version=3,
            auto_referrals=False,
            raise_exceptions=False,
        )

    @property
    def is_bound(self) -> bool:
        return self.bound_as is not BindState.UNBOUND

    @contextmanager
    def _bind_timeout(self):
        server = self.connection.server
        server.connect_timeout = self.config.timeout
        try:
            yield
        finally:
            server.connect_timeout = None

    def _bind(self, user: Optional[str], password: Optional[str], authentication: str) -> bool:
        self.connection.user = user
        self.connection.password = password
        self.connection.authentication = authentication

        with self._bind_timeout():
            try:
                return bool(self.connection.bind())
            except LDAPException as e:
                logging.error(f"Bind to {self.config.url} failed: {e}")
                self.connection.last_error = str(e)
                return False

    def _mark(self, state: BindState):
        self.bound_as = state
        self.bound_at = datetime.now(timezone.utc) if state is not BindState.UNBOUND else None

    def ensure_bound(self, allow_anonymous: bool = True, force: bool = False) -> bool:
        """
        Bind with the service account if one is configured, otherwise
        anonymously when allowed. No-op when already bound unless forced.

        Args:
            allow_anonymous: Attempt an anonymous bind without a service account
            force: Rebind even if already bound

        Returns:
            True if the session is bound, False otherwise
        """
        if self.is_bound and not force:
            return True

        if self.config.has_service_account:
            principal = self.config.principal(self.config.bind_user)
            if self._bind(principal, self.config.bind_password, SIMPLE):
                logging.debug(f"Bound to directory as service account {principal}")
                self._mark(BindState.BOUND_SERVICE)
                return True
            logging.warning(f"Service account bind as {principal} failed: {self.error_message()}")
            self._mark(BindState.UNBOUND)
            return False

        if allow_anonymous:
            if self._bind(None, None, ANONYMOUS):
                logging.debug("Bound to directory anonymously")
                self._mark(BindState.BOUND_ANONYMOUS)
                return True
            logging.warning(f"Anonymous bind failed: {self.error_message()}")

        self._mark(BindState.UNBOUND)
        return False

    def bind_user(self, credentials: Credentials) -> None:
        """
        Bind with a user's own credentials.

        Args:
            credentials: Username and password

        Raises:
            InvalidCredentials: if username or password is empty (no network call made)
            BindFailed: if the directory rejects the bind
        """
        if not credentials.password:
            raise InvalidCredentials()
        if not credentials.username:
            raise InvalidCredentials('A username is required')

        principal = self.config.principal(credentials.username)
        if self._bind(principal, credentials.password, SIMPLE):
            logging.info(f"Successfully authenticated as {credentials.username}")
            self._mark(BindState.BOUND_USER)
            return

        self._mark(BindState.UNBOUND)
        logging.info(f"Bind as {credentials.username} rejected: {self.error_message()}")

        if self.config.debug:
            raise BindFailed(f"{self.error_message()}: {self.diagnostic_message()}")
        raise BindFailed(self.error_message())

    def error_message(self) -> str:
        """Short error string of the last operation."""
        result = getattr(self.connection, 'result', None) or {}
        return result.get('description') or getattr(self.connection, 'last_error', None) or 'Unknown error'

    def diagnostic_message(self) -> str:
        """Extended diagnostic message returned by the server, if any."""
        result = getattr(self.connection, 'result', None) or {}
        return result.get('message') or ''

    def disconnect(self):
        """
        Unbind and close the connection.
        """
        if self.is_bound or not self.connection.closed:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logging.debug(f"Error while unbinding: {e}")
            logging.info("Disconnected from directory")
        self._mark(BindState.UNBOUND)
