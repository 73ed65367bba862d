"""
Shared fixtures: an in-memory stand-in for an ldap3 Connection to an
Active Directory domain with nested groups.

FakeDirectory evaluates the filters the package sends (AND, OR, NOT,
equality, presence and LDAP_MATCHING_RULE_IN_CHAIN) and records every
bind and search so tests can assert on network interaction.
"""

import struct
from types import SimpleNamespace

import pytest
from ldap3 import ANONYMOUS, BASE, SIMPLE
from ldap3.core.exceptions import LDAPSocketOpenError

from adauth import ActiveDirectoryAuthorizer, ADConfig

IN_CHAIN = '1.2.840.113556.1.4.1941'
BINARY_ATTRIBUTES = {'objectsid'}

DOMAIN_DN = 'DC=example,DC=com'
DOMAIN_SID = (1, 5, (21, 111, 222, 333))
GROUPS_OU = 'OU=Groups,DC=example,DC=com'
PEOPLE_OU = 'OU=People,DC=example,DC=com'

ADMINS_DN = f'CN=NMS Admins,{GROUPS_OU}'
USERS_GROUP_DN = f'CN=NMS Users,{GROUPS_OU}'
NETWORK_TEAM_DN = f'CN=Network Team,{GROUPS_OU}'
CORE_ENGINEERS_DN = f'CN=Core Engineers,{GROUPS_OU}'
DOMAIN_USERS_DN = 'CN=Users,CN=Users,DC=example,DC=com'

PASSWORDS = {
    'alice@example.com': 'wonderland',
    'bob@example.com': 'builder',
    'carol@example.com': 'singer',
    'dave@example.com': 'grohl',
    'svc-nms@example.com': 'service-secret',
}


def sid_bytes(*sub_authorities, revision=1, authority=5) -> bytes:
    data = struct.pack('BB', revision, len(sub_authorities))
    data += authority.to_bytes(6, byteorder='big')
    for sub_authority in sub_authorities:
        data += struct.pack('<I', sub_authority)
    return data


def user_sid(rid: int) -> bytes:
    return sid_bytes(*DOMAIN_SID[2], rid)


def _unescape(value: str) -> bytes:
    out = bytearray()
    i = 0
    while i < len(value):
        if value[i] == '\\':
            out.append(int(value[i + 1:i + 3], 16))
            i += 3
        else:
            out.extend(value[i].encode('utf-8'))
            i += 1
    return bytes(out)


def parse_filter(text: str):
    node, pos = _parse(text, 0)
    if pos != len(text):
        raise ValueError(f"Trailing data in filter {text!r}")
    return node


def _parse(text, pos):
    if text[pos] != '(':
        raise ValueError(f"Expected '(' at {pos} in {text!r}")
    pos += 1
    op = text[pos]
    if op in '&|':
        pos += 1
        children = []
        while text[pos] == '(':
            child, pos = _parse(text, pos)
            children.append(child)
        return (op, children), pos + 1
    if op == '!':
        child, pos = _parse(text, pos + 1)
        return ('!', child), pos + 1

    end = text.index(')', pos)
    attribute, _, value = text[pos:end].partition('=')
    if attribute.endswith(':'):
        name, rule = attribute[:-1].split(':', 1)
        if rule != IN_CHAIN:
            raise ValueError(f"Unsupported matching rule {rule}")
        return ('chain', name.lower(), _unescape(value)), end + 1
    if value == '*':
        return ('present', attribute.lower()), end + 1
    return ('eq', attribute.lower(), _unescape(value)), end + 1


class FakeDirectory:
    """Duck-typed replacement for ldap3.Connection."""

    def __init__(self, allow_anonymous=True):
        self.server = SimpleNamespace(connect_timeout=None)
        self.allow_anonymous = allow_anonymous
        self.entries = {}
        self.passwords = dict(PASSWORDS)

        self.user = None
        self.password = None
        self.authentication = None
        self.last_error = None
        self.closed = True
        self.bound_principal = None

        self.result = {}
        self.response = []
        self.bind_calls = []
        self.search_calls = []
        self.unreachable = False
        self.search_failure = None

    # Directory content

    def add(self, dn, **attributes):
        values = {}
        for name, raw in attributes.items():
            raw = raw if isinstance(raw, list) else [raw]
            values[name.lower()] = [v if isinstance(v, bytes) else str(v).encode('utf-8') for v in raw]
        values.setdefault('distinguishedname', [dn.encode('utf-8')])
        self.entries[dn.lower()] = (dn, values)

    def add_group(self, name, dn, member_of=()):
        self.add(dn, objectClass=['top', 'group'], cn=name, sAMAccountName=name, memberOf=list(member_of))

    def add_user(self, username, rid, member_of=(), display_name=None, mail=None):
        dn = f'CN={display_name or username},{PEOPLE_OU}'
        self.add(
            dn,
            objectClass=['top', 'person', 'organizationalPerson', 'user'],
            objectCategory='person',
            sAMAccountName=username,
            displayName=display_name or username,
            name=display_name or username,
            mail=mail or f'{username}@example.com',
            objectSid=user_sid(rid),
            memberOf=list(member_of),
        )
        return dn

    # ldap3.Connection surface

    def bind(self):
        self.bind_calls.append({
            'user': self.user,
            'authentication': self.authentication,
            'timeout': self.server.connect_timeout,
        })
        if self.unreachable:
            raise LDAPSocketOpenError('socket connection error while opening: [Errno 111] Connection refused')
        self.closed = False

        if self.authentication == ANONYMOUS and self.allow_anonymous:
            ok = True
        elif self.authentication == SIMPLE:
            ok = self.user in self.passwords and self.passwords[self.user] == self.password
        else:
            ok = False

        if ok:
            self.bound_principal = self.user or 'anonymous'
            self.result = {'result': 0, 'description': 'success', 'message': ''}
        else:
            self.bound_principal = None
            self.result = {
                'result': 49,
                'description': 'invalidCredentials',
                'message': '80090308: LdapErr: DSID-0C09042A, comment: AcceptSecurityContext error, data 52e, v3839',
            }
        return ok

    def search(self, search_base, search_filter, search_scope, attributes):
        assert self.bound_principal is not None, 'search issued on an unbound connection'
        self.search_calls.append({
            'base': search_base,
            'filter': search_filter,
            'scope': search_scope,
            'attributes': list(attributes),
        })
        if self.search_failure is not None:
            self.result = dict(self.search_failure)
            self.response = []
            return False

        base = search_base.lower()
        if base not in self.entries:
            self.result = {'result': 32, 'description': 'noSuchObject', 'message': ''}
            self.response = []
            return False

        node = parse_filter(search_filter)
        if search_scope == BASE:
            candidates = [base]
        else:
            candidates = [key for key in self.entries if key == base or key.endswith(',' + base)]

        wanted = {a.lower(): a for a in attributes}
        self.response = []
        for key in candidates:
            dn, values = self.entries[key]
            if self._matches(key, values, node):
                raw = {wanted[name]: list(v) for name, v in values.items() if name in wanted}
                self.response.append({'type': 'searchResEntry', 'dn': dn, 'raw_attributes': raw})
        self.response.append({'type': 'searchResRef', 'uri': ['ldap://ForestDnsZones.example.com/']})
        self.result = {'result': 0, 'description': 'success', 'message': ''}
        return len(self.response) > 1

    def unbind(self):
        self.closed = True
        self.bound_principal = None
        return True

    # Filter evaluation

    def _ancestors(self, key):
        seen = set()
        pending = [v.decode('utf-8').lower() for v in self.entries[key][1].get('memberof', [])]
        while pending:
            group = pending.pop()
            if group in seen:
                continue
            seen.add(group)
            if group in self.entries:
                pending.extend(v.decode('utf-8').lower() for v in self.entries[group][1].get('memberof', []))
        return seen

    def _matches(self, key, values, node):
        kind = node[0]
        if kind == '&':
            return all(self._matches(key, values, child) for child in node[1])
        if kind == '|':
            return any(self._matches(key, values, child) for child in node[1])
        if kind == '!':
            return not self._matches(key, values, node[1])
        if kind == 'present':
            return node[1] in values
        if kind == 'chain':
            return node[2].decode('utf-8').lower() in self._ancestors(key)
        attribute, assertion = node[1], node[2]
        if attribute in BINARY_ATTRIBUTES:
            return assertion in values.get(attribute, [])
        return assertion.lower() in [v.lower() for v in values.get(attribute, [])]

    @property
    def searches(self):
        return [call['filter'] for call in self.search_calls]


@pytest.fixture
def directory():
    """Domain with a nested group chain Core Engineers -> Network Team -> NMS Users."""
    fake = FakeDirectory()
    fake.add(DOMAIN_DN, objectClass=['top', 'domain', 'domainDNS'], objectSid=sid_bytes(*DOMAIN_SID[2]))
    fake.add(GROUPS_OU, objectClass=['top', 'organizationalUnit'])
    fake.add(PEOPLE_OU, objectClass=['top', 'organizationalUnit'])
    fake.add('CN=Users,DC=example,DC=com', objectClass=['top', 'container'])

    fake.add_group('Users', DOMAIN_USERS_DN)
    fake.add_group('NMS Admins', ADMINS_DN)
    fake.add_group('NMS Users', USERS_GROUP_DN)
    fake.add_group('Network Team', NETWORK_TEAM_DN, member_of=[USERS_GROUP_DN])
    fake.add_group('Core Engineers', CORE_ENGINEERS_DN, member_of=[NETWORK_TEAM_DN])
    fake.add_group('Duplicate', f'CN=Duplicate,{GROUPS_OU}')
    fake.add_group('Duplicate', 'CN=Duplicate,CN=Users,DC=example,DC=com')

    fake.add_user('alice', 1001, member_of=[ADMINS_DN, USERS_GROUP_DN, DOMAIN_USERS_DN], display_name='Alice Liddell')
    fake.add_user('bob', 1002, member_of=[USERS_GROUP_DN, DOMAIN_USERS_DN], display_name='Bob Builder')
    fake.add_user('carol', 1003, member_of=[CORE_ENGINEERS_DN, DOMAIN_USERS_DN], display_name='Carol King')
    fake.add_user('dave', 1004, member_of=[DOMAIN_USERS_DN], display_name='Dave Grohl')
    fake.add_user('svc-nms', 1100, member_of=[DOMAIN_USERS_DN])
    return fake


def make_config(**overrides) -> ADConfig:
    settings = dict(
        url='ldap://dc1.example.com',
        domain='example.com',
        base_dn=DOMAIN_DN,
        bind_user='svc-nms',
        bind_password='service-secret',
        groups={'NMS Admins': 10, 'NMS Users': 5},
    )
    settings.update(overrides)
    return ADConfig(**settings)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def make_authorizer(directory):
    """Factory building an authorizer on the fake directory with config overrides."""

    def factory(**overrides):
        remember_me = overrides.pop('remember_me', None)
        permission_store = overrides.pop('permission_store', None)
        return ActiveDirectoryAuthorizer(
            make_config(**overrides),
            connection=directory,
            remember_me=remember_me,
            permission_store=permission_store,
        )

    return factory


@pytest.fixture
def authorizer(make_authorizer):
    return make_authorizer()
