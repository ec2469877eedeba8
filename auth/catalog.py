"""
auth/catalog.py -- Closed catalog of permission, role and resource names.

Each enum is the single bidirectional lookup between a Python identifier and
its canonical wire string:

    PermissionName.BOOKS_READ.value      -> "books.read"
    PermissionName("books.read")         -> PermissionName.BOOKS_READ
    permission_from_name("no.such")      -> None

Business logic imports these members instead of scattering string literals.
The catalog is append-only: a member is never renamed or reused, because the
names are stored in the permissions/roles tables and referenced by tags.

ROLE_PERMISSIONS is the default grant matrix applied by
PermissionStore.seed_defaults().
"""

from __future__ import annotations

import re
from enum import Enum
from typing import NamedTuple

_PERMISSION_NAME = re.compile(r"[a-z][a-z0-9_]*\.[a-z][a-z0-9_]*")


class PermissionName(str, Enum):
    # Books
    BOOKS_READ = "books.read"
    BOOKS_WRITE = "books.write"
    BOOKS_DELETE = "books.delete"
    BOOKS_MANAGE = "books.manage"

    # Genres
    GENRES_READ = "genres.read"
    GENRES_WRITE = "genres.write"
    GENRES_MANAGE = "genres.manage"

    # Users
    USERS_READ = "users.read"
    USERS_WRITE = "users.write"
    USERS_DELETE = "users.delete"
    USERS_MANAGE = "users.manage"

    # Admin
    ADMIN_FULL = "admin.full"
    ADMIN_USERS = "admin.users"
    ADMIN_ROLES = "admin.roles"
    SYSTEM_ADMIN = "system.admin"
    SYSTEM_CONFIG = "system.config"

    # Content gating
    CONTENT_NSFW = "content.nsfw"
    CONTENT_RESTRICTED = "content.restricted"


class ResourceType(str, Enum):
    BOOK = "book"
    GENRE = "genre"
    USER = "user"
    SYSTEM = "system"
    CONTENT = "content"


class RoleName(str, Enum):
    ADMIN = "admin"
    LIBRARIAN = "librarian"
    USER = "user"
    GUEST = "guest"


class PermissionSpec(NamedTuple):
    resource: ResourceType
    description: str


# Holding either of these makes a user an administrator.
ADMIN_PERMISSIONS: tuple[PermissionName, ...] = (PermissionName.ADMIN_FULL, PermissionName.SYSTEM_ADMIN)

PERMISSION_SPECS: dict[PermissionName, PermissionSpec] = {
    PermissionName.BOOKS_READ: PermissionSpec(ResourceType.BOOK, "Read books"),
    PermissionName.BOOKS_WRITE: PermissionSpec(ResourceType.BOOK, "Add/edit books"),
    PermissionName.BOOKS_DELETE: PermissionSpec(ResourceType.BOOK, "Delete books"),
    PermissionName.BOOKS_MANAGE: PermissionSpec(ResourceType.BOOK, "Full book management"),
    PermissionName.GENRES_READ: PermissionSpec(ResourceType.GENRE, "Read genres"),
    PermissionName.GENRES_WRITE: PermissionSpec(ResourceType.GENRE, "Add/edit genres"),
    PermissionName.GENRES_MANAGE: PermissionSpec(ResourceType.GENRE, "Full genre management"),
    PermissionName.USERS_READ: PermissionSpec(ResourceType.USER, "View user information"),
    PermissionName.USERS_WRITE: PermissionSpec(ResourceType.USER, "Add/edit users"),
    PermissionName.USERS_DELETE: PermissionSpec(ResourceType.USER, "Delete users"),
    PermissionName.USERS_MANAGE: PermissionSpec(ResourceType.USER, "Full user management"),
    PermissionName.ADMIN_FULL: PermissionSpec(ResourceType.SYSTEM, "Full administrative access"),
    PermissionName.ADMIN_USERS: PermissionSpec(ResourceType.USER, "User administration"),
    PermissionName.ADMIN_ROLES: PermissionSpec(ResourceType.SYSTEM, "Role administration"),
    PermissionName.SYSTEM_ADMIN: PermissionSpec(ResourceType.SYSTEM, "System administration"),
    PermissionName.SYSTEM_CONFIG: PermissionSpec(ResourceType.SYSTEM, "System configuration"),
    PermissionName.CONTENT_NSFW: PermissionSpec(ResourceType.CONTENT, "Access NSFW content"),
    PermissionName.CONTENT_RESTRICTED: PermissionSpec(ResourceType.CONTENT, "Access restricted content"),
}

ROLE_DESCRIPTIONS: dict[RoleName, str] = {
    RoleName.ADMIN: "Full system administrator access",
    RoleName.LIBRARIAN: "Can manage books and users but not system settings",
    RoleName.USER: "Can read books and manage own progress",
    RoleName.GUEST: "Limited read-only access",
}

ROLE_PERMISSIONS: dict[RoleName, frozenset[PermissionName]] = {
    RoleName.ADMIN: frozenset(PermissionName),
    RoleName.LIBRARIAN: frozenset(
        {
            PermissionName.BOOKS_READ,
            PermissionName.BOOKS_WRITE,
            PermissionName.BOOKS_DELETE,
            PermissionName.BOOKS_MANAGE,
            PermissionName.GENRES_READ,
            PermissionName.GENRES_WRITE,
            PermissionName.GENRES_MANAGE,
            PermissionName.USERS_READ,
            PermissionName.USERS_WRITE,
            PermissionName.CONTENT_NSFW,
            PermissionName.CONTENT_RESTRICTED,
        }
    ),
    RoleName.USER: frozenset({PermissionName.BOOKS_READ, PermissionName.GENRES_READ}),
    RoleName.GUEST: frozenset({PermissionName.BOOKS_READ}),
}


def permission_from_name(name: str) -> PermissionName | None:
    """Look up a catalog permission by its dotted name. None if not in the catalog."""
    try:
        return PermissionName(name)
    except ValueError:
        return None


def role_from_name(name: str) -> RoleName | None:
    try:
        return RoleName(name)
    except ValueError:
        return None


def resource_from_name(name: str) -> ResourceType | None:
    try:
        return ResourceType(name)
    except ValueError:
        return None


def is_valid_permission_name(name: str) -> bool:
    """True if name has the lowercase "<resource>.<action>" wire form."""
    return bool(_PERMISSION_NAME.fullmatch(name))


def permission_action(name: str) -> str:
    """Return the action half of a dotted permission name ("books.read" -> "read").

    Raises ValueError if name is not in dotted wire form.
    """
    if not is_valid_permission_name(name):
        raise ValueError(f"Not a dotted permission name: {name!r}")
    return name.split(".", 1)[1]
