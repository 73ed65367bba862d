"""
Authentication Errors
Exception taxonomy raised by the Active Directory authorizer.
"""


class AuthenticationError(Exception):
    """
    Base class for every authentication or authorization failure.
    """

    default_message = 'Authentication failed'

    def __init__(self, message: str = ''):
        super().__init__(message or self.default_message)


class InvalidCredentials(AuthenticationError):
    default_message = 'A password is required'


class BindFailed(AuthenticationError):
    default_message = 'Unable to bind to the directory'


class DirectoryUnavailable(AuthenticationError):
    default_message = 'Directory query failed'


class NotAuthorized(AuthenticationError):
    default_message = 'Not authorized'


class GroupResolutionError(NotAuthorized):
    default_message = 'Unable to resolve group'


class GroupNotFound(GroupResolutionError):
    default_message = 'Group not found'


class AmbiguousGroup(GroupResolutionError):
    default_message = 'Multiple groups matched'


class UserNotFound(AuthenticationError):
    default_message = 'User not found'


class ConfigurationError(ValueError):
    """
    Raised when the authorizer configuration cannot be used.
    """
