"""
Security Infrastructure

Permission catalog, seed roles and role-based authorization helpers.
"""

from shared.security.rbac import (
    RBACService,
    all_permissions,
    create_default_roles,
    permissions_for_module,
    require_permission,
)

__all__ = [
    "RBACService",
    "all_permissions",
    "create_default_roles",
    "permissions_for_module",
    "require_permission",
]
