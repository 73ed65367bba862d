"""
Authorizer Configuration
Settings consumed by the Active Directory authorizer.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .exceptions import ConfigurationError

DEFAULT_GROUP = 'Users'
DEFAULT_TIMEOUT = 5
GLOBAL_READ_LEVEL = 5


def validate_filter_fragment(fragment: Optional[str]) -> Optional[str]:
    """
    Check that an administrator-supplied filter fragment is one
    parenthesised expression with balanced parentheses.
    """
    if fragment is None:
        return None
    fragment = fragment.strip()
    if not fragment:
        return None

    if not (fragment.startswith('(') and fragment.endswith(')')):
        raise ConfigurationError(f"Filter fragment must be enclosed in parentheses: {fragment!r}")

    depth = 0
    for index, char in enumerate(fragment):
        if char == '(':
            depth += 1
        elif char == ')':
            depth -= 1
            if depth < 0 or (depth == 0 and index != len(fragment) - 1):
                raise ConfigurationError(f"Filter fragment must be a single expression: {fragment!r}")
    if depth != 0:
        raise ConfigurationError(f"Unbalanced parentheses in filter fragment: {fragment!r}")

    return fragment


@dataclass
class ADConfig:
    """
    Active Directory connection and authorization settings.

    groups maps a group name to the authorization level it grants and
    keeps its declaration order.
    """

    url: str
    domain: str
    base_dn: str
    bind_user: Optional[str] = None
    bind_password: Optional[str] = None
    timeout: int = DEFAULT_TIMEOUT
    check_certificates: bool = True
    debug: bool = False
    require_groupmembership: bool = True
    global_read: bool = False
    groups: Dict[str, int] = field(default_factory=dict)
    group: Optional[str] = None
    user_filter: Optional[str] = None
    group_filter: Optional[str] = None

    def __post_init__(self):
        if not self.url:
            raise ConfigurationError("Directory URL is required")
        if not self.domain:
            raise ConfigurationError("Domain is required")
        if not self.base_dn:
            raise ConfigurationError("Base DN is required")
        if self.timeout is None or self.timeout <= 0:
            raise ConfigurationError(f"Timeout must be positive, got {self.timeout!r}")

        self.user_filter = validate_filter_fragment(self.user_filter)
        self.group_filter = validate_filter_fragment(self.group_filter)
        self.groups = {name: _parse_level(name, level) for name, level in self.groups.items()}

    @property
    def has_service_account(self) -> bool:
        return bool(self.bind_user) and self.bind_password is not None

    def principal(self, account: str) -> str:
        """User principal name used for binding."""
        return f"{account}@{self.domain}"

    @classmethod
    def from_mapping(cls, settings: Mapping[str, Any]) -> 'ADConfig':
        """
        Build a configuration from flat auth_ad_* settings.

        Args:
            settings: Mapping such as {'auth_ad_url': ..., 'auth_ad_groups': {...}}

        Returns:
            ADConfig
        """
        def get(key, default=None):
            return settings.get(f'auth_ad_{key}', default)

        try:
            return cls(
                url=get('url'),
                domain=get('domain'),
                base_dn=get('base_dn'),
                bind_user=get('binduser'),
                bind_password=get('bindpassword'),
                timeout=int(get('timeout', DEFAULT_TIMEOUT)),
                check_certificates=_parse_bool('check_certificates', get('check_certificates', True)),
                debug=_parse_bool('debug', get('debug', False)),
                require_groupmembership=_parse_bool('require_groupmembership', get('require_groupmembership', True)),
                global_read=_parse_bool('global_read', get('global_read', False)),
                groups=dict(get('groups') or {}),
                group=get('group'),
                user_filter=get('user_filter'),
                group_filter=get('group_filter'),
            )
        except ConfigurationError:
            raise
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid authorizer settings: {e}") from e


def _parse_level(group: str, level: Any) -> int:
    if isinstance(level, Mapping):
        level = level.get('level')
    try:
        return int(level)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid level for group {group!r}: {level!r}") from None


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ('1', 'true', 'yes', 'on'):
            return True
        if lowered in ('0', 'false', 'no', 'off'):
            return False
    raise ConfigurationError(f"Invalid boolean for auth_ad_{key}: {value!r}")
