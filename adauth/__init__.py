"""
Active Directory Authorizer
"""

from .authorizer import ActiveDirectoryAuthorizer
from .config import ADConfig
from .identity import UserRecord
from .sid_utils import SIDConverter, SecurityIdentifier

__all__ = ['ActiveDirectoryAuthorizer', 'ADConfig', 'UserRecord', 'SIDConverter', 'SecurityIdentifier']
