#!/usr/bin/env python3
"""
Active Directory Authorizer Check Tool
Command-line front end for testing an authorizer configuration.
"""

import argparse
import getpass
import logging
import sys
from typing import Dict, List

from adauth import ActiveDirectoryAuthorizer, ADConfig
from adauth.exceptions import AuthenticationError, ConfigurationError


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='[%(levelname)s] %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def parse_group(value: str):
    """Parse a NAME=LEVEL group mapping."""
    name, separator, level = value.rpartition('=')
    if not separator or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=LEVEL, got {value!r}")
    try:
        return name, int(level)
    except ValueError:
        raise argparse.ArgumentTypeError(f"level must be an integer, got {level!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Check Active Directory authentication and authorization settings',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Authenticate a user (password prompted):
    %(prog)s --url ldaps://dc1.example.com --domain example.com \\
             --base-dn DC=example,DC=com --group "NMS Admins=10" --authenticate jdoe

  Look up a user with a service account:
    %(prog)s --url ldap://dc1.example.com --domain example.com --base-dn DC=example,DC=com \\
             --bind-user svc-nms --bind-password Secret --group "NMS Users=5" --lookup-user jdoe

  List users of the configured groups:
    %(prog)s ... --list-users
        """
    )

    # Connection parameters
    parser.add_argument('--url', required=True, help='Directory URL (ldap:// or ldaps://)')
    parser.add_argument('--domain', required=True, help='Domain suffix used for binding (e.g., example.com)')
    parser.add_argument('--base-dn', required=True, help='Base DN for searches')
    parser.add_argument('--bind-user', help='Service account used for lookups')
    parser.add_argument('--bind-password', help='Service account password')
    parser.add_argument('--timeout', type=int, default=5, help='Bind timeout in seconds (default: 5)')
    parser.add_argument('--no-check-certificates', action='store_true', help='Do not verify TLS certificates')

    # Authorization parameters
    parser.add_argument('--group', action='append', type=parse_group, default=[], metavar='NAME=LEVEL',
                        help='Group granting an authorization level (repeatable, checked in order)')
    parser.add_argument('--no-require-group', action='store_true', help='Do not require group membership to log in')
    parser.add_argument('--global-read', action='store_true', help='Grant read level to users without a group')
    parser.add_argument('--user-filter', help='Extra filter ANDed with user searches')
    parser.add_argument('--group-filter', help='Extra filter ANDed with group searches')

    # Actions
    action_group = parser.add_mutually_exclusive_group(required=True)
    action_group.add_argument('--authenticate', metavar='USER', help='Authenticate a user')
    action_group.add_argument('--lookup-user', metavar='USER', help='Show id and level of a user')
    action_group.add_argument('--get-user', metavar='ID', type=int, help='Show the user with a local id')
    action_group.add_argument('--list-users', action='store_true', help='List users of the configured groups')

    parser.add_argument('-p', '--password', help='Password for --authenticate')

    # Other options
    parser.add_argument('--debug', action='store_true', help='Show detailed authentication errors')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose output')

    return parser


def build_config(args) -> ADConfig:
    groups: Dict[str, int] = dict(args.group)
    return ADConfig(
        url=args.url,
        domain=args.domain,
        base_dn=args.base_dn,
        bind_user=args.bind_user,
        bind_password=args.bind_password,
        timeout=args.timeout,
        check_certificates=not args.no_check_certificates,
        debug=args.debug,
        require_groupmembership=not args.no_require_group,
        global_read=args.global_read,
        groups=groups,
        user_filter=args.user_filter,
        group_filter=args.group_filter,
    )


def print_users(users: List):
    for user in users:
        print(f"  {user.user_id:>8}  {user.username:<24} level={user.level:<3} {user.realname} <{user.email}>")


def handle_authenticate(authorizer: ActiveDirectoryAuthorizer, username: str, password) -> bool:
    if password is None:
        password = getpass.getpass(f"Password for {username}: ")

    try:
        authorizer.authenticate(username, password)
    except AuthenticationError as e:
        print(f"\n[-] Authentication failed for {username}: {e}")
        return False

    print(f"\n[+] {username} authenticated, level {authorizer.get_userlevel(username)}")
    return True


def handle_lookup(authorizer: ActiveDirectoryAuthorizer, username: str) -> bool:
    if not authorizer.user_exists(username):
        print(f"\nUser {username} not found")
        return False

    print(f"\nUser:     {username}")
    print(f"Name:     {authorizer.get_fullname(username)}")
    print(f"Email:    {authorizer.get_email(username) or ''}")
    print(f"User id:  {authorizer.get_userid(username)}")
    print(f"Level:    {authorizer.get_userlevel(username)}")
    return True


def handle_get_user(authorizer: ActiveDirectoryAuthorizer, user_id: int) -> bool:
    user = authorizer.get_user(user_id)
    if user is None:
        print(f"\nNo user with id {user_id}")
        return False
    print_users([user])
    return True


def handle_list(authorizer: ActiveDirectoryAuthorizer) -> bool:
    users = authorizer.get_userlist()
    print(f"\n{len(users)} users:")
    print_users(users)
    return True


def main():
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        parser.error(str(e))

    authorizer = ActiveDirectoryAuthorizer(config)

    try:
        if args.authenticate:
            success = handle_authenticate(authorizer, args.authenticate, args.password)
        elif args.lookup_user:
            success = handle_lookup(authorizer, args.lookup_user)
        elif args.get_user is not None:
            success = handle_get_user(authorizer, args.get_user)
        else:
            success = handle_list(authorizer)
        sys.exit(0 if success else 1)

    except KeyboardInterrupt:
        logging.info("\nOperation cancelled by user")
        sys.exit(130)
    except AuthenticationError as e:
        logging.error(f"Directory error: {e}")
        sys.exit(1)
    finally:
        authorizer.disconnect()


if __name__ == '__main__':
    main()
