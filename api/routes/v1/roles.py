"""
api/routes/v1/roles.py -- Role listing and role assignment endpoints.

Routes:
  GET    /api/v1/roles                          -- list roles (admin.roles)
  POST   /api/v1/users/{user_id}/roles/{role}   -- assign role (admin.roles)
  DELETE /api/v1/users/{user_id}/roles/{role}   -- remove role (admin.roles)
  GET    /api/v1/users/{user_id}/permissions    -- roles + effective permissions (admin.users)

Role changes go through PermissionService so the target user's cached
permission set is invalidated before the response is sent.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import ErrorDetail, PermissionResponse, RoleResponse, UserPermissionsResponse
from auth.catalog import PermissionName
from auth.dependencies import require_permission
from auth.errors import RoleNotFoundError
from auth.models import Claims
from auth.permissions import PermissionService

router = APIRouter()

_manage_roles = require_permission(PermissionName.ADMIN_ROLES.value)
_view_users = require_permission(PermissionName.ADMIN_USERS.value)


def _require_user(request: Request, user_id: int) -> None:
    if request.app.state.user_store.get_by_id(user_id) is None:
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(code="not_found", message=f"User {user_id} not found.").model_dump(),
        )


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(request: Request, claims: Claims = Depends(_manage_roles)) -> list[RoleResponse]:
    permissions: PermissionService = request.app.state.permissions
    return [RoleResponse.from_role(r) for r in permissions.repository.list_roles()]


@router.post("/users/{user_id}/roles/{role_name}", response_model=RoleResponse)
def assign_role(
    user_id: int, role_name: str, request: Request, claims: Claims = Depends(_manage_roles)
) -> RoleResponse:
    """Assign role_name to user_id. Assigning a role the user already has is a no-op."""
    _require_user(request, user_id)
    permissions: PermissionService = request.app.state.permissions
    try:
        role = permissions.assign_role_by_name(user_id, role_name)
    except RoleNotFoundError as e:
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(code="role_not_found", message=f"Role '{role_name}' not found.").model_dump(),
        ) from e
    return RoleResponse.from_role(role)


@router.delete("/users/{user_id}/roles/{role_name}", response_model=RoleResponse)
def remove_role(
    user_id: int, role_name: str, request: Request, claims: Claims = Depends(_manage_roles)
) -> RoleResponse:
    _require_user(request, user_id)
    permissions: PermissionService = request.app.state.permissions
    try:
        role = permissions.remove_role_by_name(user_id, role_name)
    except RoleNotFoundError as e:
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(code="role_not_found", message=f"Role '{role_name}' not found.").model_dump(),
        ) from e
    return RoleResponse.from_role(role)


@router.get("/users/{user_id}/permissions", response_model=UserPermissionsResponse)
def user_permissions(
    user_id: int, request: Request, claims: Claims = Depends(_view_users)
) -> UserPermissionsResponse:
    _require_user(request, user_id)
    permissions: PermissionService = request.app.state.permissions
    return UserPermissionsResponse(
        user_id=user_id,
        roles=[RoleResponse.from_role(r) for r in permissions.get_user_roles(user_id)],
        permissions=[PermissionResponse.from_permission(p) for p in permissions.get_user_permissions(user_id)],
        is_admin=permissions.is_admin(user_id),
    )
