"""
API request and response models for the Folio REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
library/models.py, which own the internal domain representation. Route
handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from auth.models import Permission, Role
from library.models import Tag

# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    password: str = Field(min_length=1, max_length=1024)


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    expires_at: int
    user_id: int
    username: Optional[str]


class MeResponse(BaseModel):
    """Identity of the caller, taken from the verified token claims."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    username: Optional[str]
    expires_at: int
    roles: list[str]
    permissions: list[str]


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Roles and permissions
# ---------------------------------------------------------------------------


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str]

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(id=role.id, name=role.name, description=role.description)


class PermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    resource: str
    action: str
    description: Optional[str]

    @classmethod
    def from_permission(cls, permission: Permission) -> "PermissionResponse":
        return cls(
            id=permission.id,
            name=permission.name,
            resource=permission.resource,
            action=permission.action,
            description=permission.description,
        )


class UserPermissionsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    roles: list[RoleResponse]
    permissions: list[PermissionResponse]
    is_admin: bool


# ---------------------------------------------------------------------------
# Books and tags
# ---------------------------------------------------------------------------


class TagResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    category: str
    description: Optional[str]
    color: Optional[str]
    requires_permission: Optional[str]

    @classmethod
    def from_tag(cls, tag: Tag) -> "TagResponse":
        return cls(
            id=tag.id,
            name=tag.name,
            category=tag.category,
            description=tag.description,
            color=tag.color,
            requires_permission=tag.requires_permission,
        )


class AccessResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    book_id: int
    allowed: bool
    denied_reason: Optional[str] = None


class AccessibleBooksRequest(BaseModel):
    """Request body for POST /api/v1/books/accessible.

    The optional include/exclude lists narrow the gated result further, the
    same way ContentFilter does.
    """

    book_ids: list[int] = Field(min_length=1, max_length=500)
    include_categories: list[str] = Field(default_factory=list)
    exclude_categories: list[str] = Field(default_factory=list)
    include_tags: list[str] = Field(default_factory=list)
    exclude_tags: list[str] = Field(default_factory=list)


class AccessibleBooksResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    requested: int
    book_ids: list[int]


class TagAssignRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    tags: list[str] = Field(min_length=1, max_length=50)


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
