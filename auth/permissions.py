"""
auth/permissions.py -- Cached permission resolution for request-time checks.

PermissionService answers "does user U hold permission P?" from the union of
U's role grants, resolved once per TTL window and kept in a PermissionCache.

Concurrency:
  The cache lock covers only dict operations. Repository queries run with
  no lock held, so a slow database stalls only the requests that missed.
  A load that started before an invalidation is not stored afterwards
  (see cache/store.py), so role changes are visible to the next check.

Failure mode:
  Fail closed. A repository error propagates out of has_permission() and
  friends; nothing is cached and no caller may treat the error as a grant.

Layer rule: no imports from api/ or library/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.catalog import ADMIN_PERMISSIONS
from auth.errors import RoleNotFoundError
from auth.models import Permission, Role
from auth.permission_store import PermissionRepository
from cache.store import PermissionCache

logger = logging.getLogger("folio.permissions")


class PermissionService:
    """Role-based permission checks with a per-user TTL cache.

    Usage:
        service = PermissionService(PermissionStore(db_url), ttl=300)
        if service.has_permission(user_id, "books.write"):
            ...
        service.assign_role_by_name(user_id, "librarian")   # invalidates user_id
    """

    def __init__(
        self,
        repository: PermissionRepository,
        cache: PermissionCache | None = None,
        ttl: float = 300,
    ) -> None:
        self.repository = repository
        self.cache = cache if cache is not None else PermissionCache(ttl=ttl)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def get_permission_names(self, user_id: int) -> frozenset[str]:
        """Return the user's effective permission names, from cache when fresh."""
        names = self.cache.get(user_id)
        if names is not None:
            return names

        generation = self.cache.generation(user_id)
        names = frozenset(p.name for p in self.repository.get_user_permissions(user_id))
        if self.cache.set(user_id, names, generation):
            logger.debug("Permissions loaded for user %d (%d names)", user_id, len(names))
        else:
            logger.debug("Permissions for user %d changed during load; result not cached", user_id)
        return names

    def has_permission(self, user_id: int, name: str) -> bool:
        return name in self.get_permission_names(user_id)

    def has_any_permission(self, user_id: int, names: Iterable[str]) -> bool:
        """True if the user holds at least one of names. Empty names -> False."""
        return any(self.has_permission(user_id, n) for n in names)

    def has_all_permissions(self, user_id: int, names: Iterable[str]) -> bool:
        """True if the user holds every one of names. Empty names -> True."""
        return all(self.has_permission(user_id, n) for n in names)

    def is_admin(self, user_id: int) -> bool:
        return self.has_any_permission(user_id, [p.value for p in ADMIN_PERMISSIONS])

    def invalidate(self, user_id: int) -> None:
        self.cache.invalidate(user_id)
        logger.debug("Permission cache invalidated for user %d", user_id)

    # ------------------------------------------------------------------
    # Uncached pass-throughs
    # ------------------------------------------------------------------

    def get_user_permissions(self, user_id: int) -> list[Permission]:
        return self.repository.get_user_permissions(user_id)

    def get_user_roles(self, user_id: int) -> list[Role]:
        return self.repository.get_user_roles(user_id)

    # ------------------------------------------------------------------
    # Role mutations
    # ------------------------------------------------------------------

    def assign_role_to_user(self, user_id: int, role_id: int) -> None:
        """Assign a role, then drop the user's cached set.

        If the write raises, the cache is left untouched.
        """
        self.repository.assign_role_to_user(user_id, role_id)
        self.invalidate(user_id)
        logger.info("Role %d assigned to user %d", role_id, user_id)

    def remove_role_from_user(self, user_id: int, role_id: int) -> None:
        self.repository.remove_role_from_user(user_id, role_id)
        self.invalidate(user_id)
        logger.info("Role %d removed from user %d", role_id, user_id)

    def assign_role_by_name(self, user_id: int, role_name: str) -> Role:
        role = self._require_role(role_name)
        self.assign_role_to_user(user_id, role.id)
        return role

    def remove_role_by_name(self, user_id: int, role_name: str) -> Role:
        role = self._require_role(role_name)
        self.remove_role_from_user(user_id, role.id)
        return role

    def _require_role(self, role_name: str) -> Role:
        role = self.repository.get_role_by_name(role_name)
        if role is None:
            raise RoleNotFoundError(role_name=role_name)
        return role
