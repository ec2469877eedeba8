"""
auth/permission_store.py -- SQLAlchemy Core persistence for roles and permissions.

Pattern: Repository + Data Mapper. PermissionRepository is the read/write
contract PermissionService depends on; PermissionStore is the SQL
implementation. Tests substitute any object with the same methods.

Schema:
  roles             (id, name UNIQUE, description, created_at)
  permissions       (id, name UNIQUE, resource, action, description, created_at)
  role_permissions  (role_id, permission_id)  PK on both, CASCADE deletes
  user_roles        (user_id, role_id)        PK on both, CASCADE deletes
  user_permissions  (user_id, permission_id, resource_id, granted_at)

Effective permissions are the DISTINCT union over the user's roles. Direct
user_permissions rows are stored and listable but never widen that set.

Link writes (assign_*) are idempotent through INSERT ... ON CONFLICT DO
NOTHING; removals of absent links are no-ops. SQLAlchemyError propagates to
the caller unchanged; nothing here retries.

Layer rule: no imports from api/, library/ or cache/.
"""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import Column, ForeignKey, Integer, PrimaryKeyConstraint, String, Table, Text, exists, select
from sqlalchemy.engine import Engine

import auth.store  # noqa: F401  registers users on the shared metadata for the FKs below
from auth.catalog import PERMISSION_SPECS, ROLE_DESCRIPTIONS, ROLE_PERMISSIONS, permission_action
from auth.models import Permission, Role, UserPermission
from core.config import DEFAULT_DB_URL
from core.database import create_db_engine, insert_ignore, metadata, now_iso

logger = logging.getLogger("folio.permissions")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(64), nullable=False, unique=True),
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
)

permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(128), nullable=False, unique=True),
    Column("resource", String(64), nullable=False),
    Column("action", String(64), nullable=False),
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
)

role_permissions = Table(
    "role_permissions",
    metadata,
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False),
    PrimaryKeyConstraint("role_id", "permission_id"),
)

user_roles = Table(
    "user_roles",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
    Column("granted_at", String(32), nullable=False),
    PrimaryKeyConstraint("user_id", "role_id"),
)

user_permissions = Table(
    "user_permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False),
    Column("resource_id", Integer),
    Column("granted_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Repository contract
# ---------------------------------------------------------------------------


class PermissionRepository(Protocol):
    """What PermissionService needs from storage."""

    def get_user_permissions(self, user_id: int) -> list[Permission]: ...

    def get_user_roles(self, user_id: int) -> list[Role]: ...

    def assign_role_to_user(self, user_id: int, role_id: int) -> None: ...

    def remove_role_from_user(self, user_id: int, role_id: int) -> None: ...

    def get_role_by_name(self, name: str) -> Role | None: ...

    def get_role_by_id(self, role_id: int) -> Role | None: ...

    def list_roles(self) -> list[Role]: ...

    def create_permission(self, name: str, resource: str, action: str, description: str | None = None) -> int: ...

    def assign_permission_to_role(self, role_id: int, permission_id: int) -> None: ...


# ---------------------------------------------------------------------------
# SQL implementation
# ---------------------------------------------------------------------------


class PermissionStore:
    """Repository for Role, Permission and their links.

    Usage:
        store = PermissionStore(db_url)
        store.seed_defaults()
        admin = store.get_role_by_name("admin")
        store.assign_role_to_user(user_id, admin.id)
        names = {p.name for p in store.get_user_permissions(user_id)}
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL) -> None:
        self.engine: Engine = create_db_engine(db_url)

    # ------------------------------------------------------------------
    # Effective permissions
    # ------------------------------------------------------------------

    def get_user_permissions(self, user_id: int) -> list[Permission]:
        """Distinct permissions granted to user_id through any of their roles."""
        stmt = (
            select(permissions)
            .distinct()
            .join(role_permissions, role_permissions.c.permission_id == permissions.c.id)
            .join(user_roles, user_roles.c.role_id == role_permissions.c.role_id)
            .where(user_roles.c.user_id == user_id)
            .order_by(permissions.c.name)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_permission(r) for r in rows]

    def user_has_permission(self, user_id: int, name: str) -> bool:
        """Single-query membership check, bypassing any cache."""
        stmt = select(
            exists()
            .where(permissions.c.name == name)
            .where(role_permissions.c.permission_id == permissions.c.id)
            .where(user_roles.c.role_id == role_permissions.c.role_id)
            .where(user_roles.c.user_id == user_id)
        )
        with self.engine.connect() as conn:
            return bool(conn.execute(stmt).scalar())

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, name: str, description: str | None = None) -> int:
        """Insert a role and return its ID. IntegrityError if the name exists."""
        with self.engine.connect() as conn:
            result = conn.execute(roles.insert().values(name=name, description=description, created_at=now_iso()))
            conn.commit()
            return result.inserted_primary_key[0]

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(roles.select().where(roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_id(self, role_id: int) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(roles.select().where(roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(roles.select().order_by(roles.c.name)).fetchall()
        return [_row_to_role(r) for r in rows]

    def get_user_roles(self, user_id: int) -> list[Role]:
        stmt = (
            select(roles)
            .join(user_roles, user_roles.c.role_id == roles.c.id)
            .where(user_roles.c.user_id == user_id)
            .order_by(roles.c.name)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_role(r) for r in rows]

    def assign_role_to_user(self, user_id: int, role_id: int) -> None:
        """Link user_id to role_id. Assigning an existing link is a no-op."""
        stmt = insert_ignore(self.engine, user_roles).values(user_id=user_id, role_id=role_id, granted_at=now_iso())
        with self.engine.connect() as conn:
            conn.execute(stmt)
            conn.commit()

    def remove_role_from_user(self, user_id: int, role_id: int) -> None:
        stmt = user_roles.delete().where(user_roles.c.user_id == user_id).where(user_roles.c.role_id == role_id)
        with self.engine.connect() as conn:
            conn.execute(stmt)
            conn.commit()

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def create_permission(self, name: str, resource: str, action: str, description: str | None = None) -> int:
        """Insert a permission and return its ID. IntegrityError if the name exists."""
        with self.engine.connect() as conn:
            result = conn.execute(
                permissions.insert().values(
                    name=name,
                    resource=resource,
                    action=action,
                    description=description,
                    created_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_permission_by_name(self, name: str) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(permissions.select().where(permissions.c.name == name)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def list_permissions(self) -> list[Permission]:
        with self.engine.connect() as conn:
            rows = conn.execute(permissions.select().order_by(permissions.c.name)).fetchall()
        return [_row_to_permission(r) for r in rows]

    def get_role_permissions(self, role_id: int) -> list[Permission]:
        stmt = (
            select(permissions)
            .join(role_permissions, role_permissions.c.permission_id == permissions.c.id)
            .where(role_permissions.c.role_id == role_id)
            .order_by(permissions.c.name)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_permission(r) for r in rows]

    def assign_permission_to_role(self, role_id: int, permission_id: int) -> None:
        """Grant permission_id to role_id. Granting an existing link is a no-op.

        Does not invalidate any permission cache; callers that change grants
        on a live system must invalidate the affected users themselves.
        """
        stmt = insert_ignore(self.engine, role_permissions).values(role_id=role_id, permission_id=permission_id)
        with self.engine.connect() as conn:
            conn.execute(stmt)
            conn.commit()

    # ------------------------------------------------------------------
    # Direct user grants (stored, not resolved)
    # ------------------------------------------------------------------

    def grant_user_permission(self, user_id: int, permission_id: int, resource_id: int | None = None) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                user_permissions.insert().values(
                    user_id=user_id,
                    permission_id=permission_id,
                    resource_id=resource_id,
                    granted_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def revoke_user_permission(self, user_id: int, permission_id: int, resource_id: int | None = None) -> int:
        """Delete matching direct grants. Returns the number of rows removed."""
        stmt = (
            user_permissions.delete()
            .where(user_permissions.c.user_id == user_id)
            .where(user_permissions.c.permission_id == permission_id)
        )
        if resource_id is None:
            stmt = stmt.where(user_permissions.c.resource_id.is_(None))
        else:
            stmt = stmt.where(user_permissions.c.resource_id == resource_id)
        with self.engine.connect() as conn:
            result = conn.execute(stmt)
            conn.commit()
        return result.rowcount

    def list_direct_grants(self, user_id: int) -> list[UserPermission]:
        stmt = (
            user_permissions.select()
            .where(user_permissions.c.user_id == user_id)
            .order_by(user_permissions.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [
            UserPermission(
                user_id=r.user_id,
                permission_id=r.permission_id,
                resource_id=r.resource_id,
                granted_at=r.granted_at,
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def seed_defaults(self) -> None:
        """Create the catalog permissions, roles and default role grants.

        Safe to run on every startup: existing rows are reused, never
        modified, and missing links are added.
        """
        permission_ids: dict[str, int] = {}
        created = 0
        for name, entry in PERMISSION_SPECS.items():
            existing = self.get_permission_by_name(name.value)
            if existing is not None:
                permission_ids[name.value] = existing.id
                continue
            permission_ids[name.value] = self.create_permission(
                name.value, entry.resource.value, permission_action(name.value), entry.description
            )
            created += 1

        for role_name, granted in ROLE_PERMISSIONS.items():
            role = self.get_role_by_name(role_name.value)
            role_id = role.id if role is not None else self.create_role(role_name.value, ROLE_DESCRIPTIONS[role_name])
            for name in granted:
                self.assign_permission_to_role(role_id, permission_ids[name.value])

        logger.info("RBAC defaults seeded (%d new permissions)", created)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name, description=row.description, created_at=row.created_at)


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        name=row.name,
        resource=row.resource,
        action=row.action,
        description=row.description,
        created_at=row.created_at,
    )
