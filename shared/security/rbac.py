"""
Role-Based Access Control (RBAC)

Permission catalog, seed roles and a role registry used by the outer request
layer to gate operations before they reach the PPA use cases.
"""

from collections.abc import Iterable

import structlog

from shared.domain.exceptions import AuthorizationError, DuplicateKeyError, NotFoundError
from shared.domain.security import Permission, PermissionLike, Role, User

logger = structlog.get_logger(__name__)


class PeriodsPermissions:
    VIEW = Permission.create("periods.view")
    CREATE = Permission.create("periods.create")
    UPDATE = Permission.create("periods.update")
    DEACTIVATE = Permission.create("periods.deactivate")


class SubjectsPermissions:
    VIEW = Permission.create("subjects.view")
    CREATE = Permission.create("subjects.create")
    UPDATE = Permission.create("subjects.update")
    DEACTIVATE = Permission.create("subjects.deactivate")


class TeacherSubjectsPermissions:
    MANAGE = Permission.create("teacherSubjects.manage")


class PpaPermissions:
    VIEW_ALL = Permission.create("ppa.view_all")
    VIEW_OWN = Permission.create("ppa.view_own")
    CREATE = Permission.create("ppa.create")
    UPDATE = Permission.create("ppa.update")
    CHANGE_STATUS = Permission.create("ppa.change_status")
    UPLOAD_FILE = Permission.create("ppa.upload_file")


class ResourcesPermissions:
    VIEW_ALL = Permission.create("resources.view_all")
    VIEW_OWN = Permission.create("resources.view_own")
    CREATE = Permission.create("resources.create")
    UPDATE = Permission.create("resources.update")
    DELETE = Permission.create("resources.delete")


class DashboardPermissions:
    VIEW = Permission.create("dashboard.view")
    VIEW_DETAILS = Permission.create("dashboard.view_details")


PERMISSION_GROUPS = (
    PeriodsPermissions,
    SubjectsPermissions,
    TeacherSubjectsPermissions,
    PpaPermissions,
    ResourcesPermissions,
    DashboardPermissions,
)

ADMIN = "ADMIN"
DOCENTE = "DOCENTE"
CONSULTA_INTERNA = "CONSULTA_INTERNA"


def all_permissions() -> list[Permission]:
    """Every permission in the catalog, in declaration order."""
    result: list[Permission] = []
    for group in PERMISSION_GROUPS:
        result.extend(v for v in vars(group).values() if isinstance(v, Permission))
    return result


def permissions_for_module(module: str) -> list[Permission]:
    module = module.strip().lower()
    return [p for p in all_permissions() if p.module == module]


def create_default_roles() -> list[Role]:
    """
    Create the system roles with their permission sets.

    Returns:
        List of system roles (ADMIN, DOCENTE, CONSULTA_INTERNA)
    """
    admin = Role.create(
        code=ADMIN,
        name="Administrator",
        description="Academic catalog management, PPA supervision and full dashboard",
        is_system_role=True,
        permissions=[
            *permissions_for_module("periods"),
            *permissions_for_module("subjects"),
            TeacherSubjectsPermissions.MANAGE,
            PpaPermissions.VIEW_ALL,
            PpaPermissions.CREATE,
            PpaPermissions.UPDATE,
            PpaPermissions.CHANGE_STATUS,
            PpaPermissions.UPLOAD_FILE,
            ResourcesPermissions.VIEW_ALL,
            ResourcesPermissions.CREATE,
            ResourcesPermissions.UPDATE,
            ResourcesPermissions.DELETE,
            DashboardPermissions.VIEW,
            DashboardPermissions.VIEW_DETAILS,
        ],
    )

    teacher = Role.create(
        code=DOCENTE,
        name="Teacher",
        description="Manages own PPAs and resources",
        is_system_role=True,
        permissions=[
            PeriodsPermissions.VIEW,
            SubjectsPermissions.VIEW,
            PpaPermissions.VIEW_OWN,
            PpaPermissions.CREATE,
            PpaPermissions.UPDATE,
            PpaPermissions.CHANGE_STATUS,
            PpaPermissions.UPLOAD_FILE,
            ResourcesPermissions.VIEW_OWN,
            ResourcesPermissions.CREATE,
            ResourcesPermissions.UPDATE,
            ResourcesPermissions.DELETE,
            DashboardPermissions.VIEW,
        ],
    )

    internal_viewer = Role.create(
        code=CONSULTA_INTERNA,
        name="Internal viewer",
        description="Read-only access to PPAs, resources and the basic dashboard",
        is_system_role=True,
        permissions=[
            PeriodsPermissions.VIEW,
            SubjectsPermissions.VIEW,
            PpaPermissions.VIEW_ALL,
            ResourcesPermissions.VIEW_ALL,
            DashboardPermissions.VIEW,
        ],
    )

    return [admin, teacher, internal_viewer]


class RBACService:
    """
    Role registry evaluating permissions by role code.

    Codes are unique across the registry.
    """

    def __init__(self, roles: Iterable[Role] = ()):
        self.role_cache: dict[str, Role] = {}
        for role in roles:
            self.load_role(role)

    @classmethod
    def with_default_roles(cls) -> "RBACService":
        return cls(create_default_roles())

    def load_role(self, role: Role) -> None:
        """
        Load a role into the cache.

        Raises:
            DuplicateKeyError: If another role already uses the code
        """
        if role.code in self.role_cache:
            raise DuplicateKeyError(f"Role code already registered: {role.code}", key=role.code)
        self.role_cache[role.code] = role

    def get_role(self, code: str) -> Role:
        role = self.role_cache.get(code.strip().upper())
        if role is None:
            raise NotFoundError("Role", code)
        return role

    def delete_role(self, code: str) -> None:
        role = self.get_role(code)
        role.ensure_deletable()
        del self.role_cache[role.code]
        logger.info("Role deleted", role_code=role.code)

    def has_permission(self, role_codes: Iterable[str], permission: PermissionLike) -> bool:
        """
        Check if any of the given roles grants the permission.

        Unknown role codes are skipped with a warning.
        """
        for code in role_codes:
            role = self.role_cache.get(code.strip().upper())
            if role is None:
                logger.warning("Role not found in cache", role_code=code)
                continue
            if role.has_permission(permission):
                return True

        logger.debug("Permission denied", permission=str(permission))
        return False

    def get_effective_permissions(self, role_codes: Iterable[str]) -> set[Permission]:
        result: set[Permission] = set()
        for code in role_codes:
            role = self.role_cache.get(code.strip().upper())
            if role:
                result |= role.permissions
        return result


def require_permission(user: User, permission: PermissionLike) -> None:
    """
    Gate an operation on a user permission.

    Raises:
        AuthorizationError: If the user is inactive or lacks the permission
    """
    if not user.is_active or not user.has_permission(permission):
        raise AuthorizationError(
            f"User lacks permission {permission}",
            permission=str(permission),
            context={"user_id": str(user.id)},
        )
