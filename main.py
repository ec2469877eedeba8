#!/usr/bin/env python3
"""
Folio -- administration CLI for the library authorization core.

Works directly against DATABASE_URL; the API server does not need to run.

Usage:
  python main.py seed
  python main.py create-user alice@example.com --username alice --role librarian
  python main.py roles
  python main.py assign-role alice@example.com admin
  python main.py remove-role alice@example.com admin
  python main.py permissions alice@example.com
  python main.py check alice@example.com content.nsfw
  python main.py issue-token alice@example.com
  python main.py verify-token <token>
  python main.py purge-sessions

Environment variables:
  DATABASE_URL  SQLAlchemy URL (default: sqlite file next to this script)
  SECRET_KEY    Token signing key, required for issue-token / verify-token
                unless DEBUG=true
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth.errors import FolioError, RoleNotFoundError
from auth.models import User
from auth.permission_store import PermissionStore
from auth.permissions import PermissionService
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import TokenService, hash_password
from core.config import get_settings
from library.store import TagStore


def _require_user(users: UserStore, email: str) -> Optional[User]:
    user = users.get_by_email(email)
    if user is None:
        print(f"  [!] No user with email '{email}'.")
    return user


def _read_password() -> str:
    while True:
        password = getpass.getpass("  Password: ")
        if len(password) < 8:
            print("  [!] Password must be at least 8 characters.")
            continue
        if getpass.getpass("  Repeat: ") != password:
            print("  [!] Passwords do not match.")
            continue
        return password


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_seed(args, users: UserStore, perms: PermissionStore, tags: TagStore) -> int:
    perms.seed_defaults()
    created = tags.seed_default_tags()
    print(f"  Roles: {', '.join(r.name for r in perms.list_roles())}")
    print(f"  {len(perms.list_permissions())} permissions, {created} new tags.")
    return 0


def cmd_create_user(args, users: UserStore, perms: PermissionStore, tags: TagStore) -> int:
    if users.get_by_email(args.email) is not None:
        print(f"  [!] A user with email '{args.email}' already exists.")
        return 1
    password = args.password or _read_password()
    uid = users.create_user(User(email=args.email, username=args.username, hashed_password=hash_password(password)))
    print(f"  Created user {uid} ({args.email}).")
    if args.role:
        return _change_role(PermissionService(perms), uid, args.role, assign=True)
    return 0


def cmd_roles(args, users: UserStore, perms: PermissionStore, tags: TagStore) -> int:
    for role in perms.list_roles():
        names = ", ".join(p.name for p in perms.get_role_permissions(role.id))
        print(f"  {role.name:<10} {role.description or ''}")
        print(f"  {'':<10} {names or '(no permissions)'}")
    return 0


def _change_role(service: PermissionService, user_id: int, role_name: str, assign: bool) -> int:
    try:
        if assign:
            service.assign_role_by_name(user_id, role_name)
        else:
            service.remove_role_by_name(user_id, role_name)
    except RoleNotFoundError:
        print(f"  [!] Unknown role '{role_name}'.")
        return 1
    print(f"  Role '{role_name}' {'assigned to' if assign else 'removed from'} user {user_id}.")
    return 0


def cmd_assign_role(args, users: UserStore, perms: PermissionStore, tags: TagStore) -> int:
    user = _require_user(users, args.email)
    if user is None:
        return 1
    return _change_role(PermissionService(perms), user.id, args.role, assign=True)


def cmd_remove_role(args, users: UserStore, perms: PermissionStore, tags: TagStore) -> int:
    user = _require_user(users, args.email)
    if user is None:
        return 1
    return _change_role(PermissionService(perms), user.id, args.role, assign=False)


def cmd_permissions(args, users: UserStore, perms: PermissionStore, tags: TagStore) -> int:
    user = _require_user(users, args.email)
    if user is None:
        return 1
    roles = perms.get_user_roles(user.id)
    print(f"  Roles: {', '.join(r.name for r in roles) or '(none)'}")
    for permission in perms.get_user_permissions(user.id):
        print(f"    {permission.name}")
    return 0


def cmd_check(args, users: UserStore, perms: PermissionStore, tags: TagStore) -> int:
    """Exit status 0 when the permission is held, 2 when it is not."""
    user = _require_user(users, args.email)
    if user is None:
        return 1
    allowed = PermissionService(perms).has_permission(user.id, args.permission)
    print(f"  {args.email}: {args.permission} {'ALLOWED' if allowed else 'DENIED'}")
    return 0 if allowed else 2


def cmd_issue_token(args, users: UserStore, perms: PermissionStore, tags: TagStore) -> int:
    user = _require_user(users, args.email)
    if user is None:
        return 1
    tokens = TokenService(get_settings().secret_key)
    token, claims = tokens.issue(user.id, user.email, user.username)
    users.create_session(token, user.id, claims.expires_at)
    print(token)
    return 0


def cmd_verify_token(args, users: UserStore, perms: PermissionStore, tags: TagStore) -> int:
    sessions = SessionManager(users, TokenService(get_settings().secret_key))
    try:
        claims = sessions.authenticate(args.token, require_session=args.require_session)
    except FolioError as e:
        print(f"  [!] {e.message}")
        return 1
    print(f"  user_id={claims.user_id} email={claims.email} username={claims.username}")
    print(f"  issued_at={claims.issued_at} expires_at={claims.expires_at}")
    return 0


def cmd_purge_sessions(args, users: UserStore, perms: PermissionStore, tags: TagStore) -> int:
    removed = SessionManager(users, TokenService(get_settings().secret_key)).purge_expired()
    print(f"  {removed} expired session(s) removed.")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="folio",
        description="Manage Folio users, roles and tokens.",
    )
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    sub.add_parser("seed", help="Create default roles, permissions and tags").set_defaults(func=cmd_seed)

    p = sub.add_parser("create-user", help="Create a password account")
    p.add_argument("email")
    p.add_argument("--username")
    p.add_argument("--role", help="Role to assign after creation")
    p.add_argument("--password", help="Password (prompted when omitted)")
    p.set_defaults(func=cmd_create_user)

    sub.add_parser("roles", help="List roles and their permissions").set_defaults(func=cmd_roles)

    for name, func, text in (
        ("assign-role", cmd_assign_role, "Assign a role to a user"),
        ("remove-role", cmd_remove_role, "Remove a role from a user"),
    ):
        p = sub.add_parser(name, help=text)
        p.add_argument("email")
        p.add_argument("role")
        p.set_defaults(func=func)

    p = sub.add_parser("permissions", help="Show a user's effective permissions")
    p.add_argument("email")
    p.set_defaults(func=cmd_permissions)

    p = sub.add_parser("check", help="Check one permission for a user")
    p.add_argument("email")
    p.add_argument("permission", metavar="PERMISSION", help="Dotted name, e.g. books.read")
    p.set_defaults(func=cmd_check)

    p = sub.add_parser("issue-token", help="Issue a bearer token for a user")
    p.add_argument("email")
    p.set_defaults(func=cmd_issue_token)

    p = sub.add_parser("verify-token", help="Validate a bearer token and print its claims")
    p.add_argument("token")
    p.add_argument("--require-session", action="store_true", help="Also require a live session row")
    p.set_defaults(func=cmd_verify_token)

    sub.add_parser("purge-sessions", help="Delete expired sessions").set_defaults(func=cmd_purge_sessions)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    args = build_parser().parse_args(argv)

    db_url = get_settings().database_url
    users = UserStore(db_url)
    perms = PermissionStore(db_url)
    tags = TagStore(db_url)
    try:
        return args.func(args, users, perms, tags)
    finally:
        tags.close()
        perms.close()
        users.close()


if __name__ == "__main__":
    sys.exit(main())
