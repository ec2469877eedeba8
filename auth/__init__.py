"""auth/ -- Authentication and authorization package for Folio.

Tokens, sessions, the permission catalog, RBAC storage and the cached
PermissionService all live here.

Layer rule: auth/ imports from core/ and cache/ only.
It does NOT import from api/ or library/.
api/ and library/ import from auth/, not the other way around.
"""
