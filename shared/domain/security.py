"""
Security Domain Models

Permission tokens, roles and users for RBAC.

Permissions are ``module.action`` capability strings. Roles bundle permissions;
users hold roles and expose the union of their permissions.
"""

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.domain.exceptions import ConflictError, FormatError, ValidationError

PERMISSION_SEPARATOR = "."


class Permission(BaseModel):
    """
    Immutable capability token of the form ``module.action``.

    Stored lower-cased; equality and hashing are by value.
    """

    model_config = ConfigDict(frozen=True)

    value: str = Field(..., description="Permission code (module.action)")

    @field_validator("value", mode="before")
    @classmethod
    def normalize_code(cls, v: object) -> str:
        """Validate ``module.action`` shape and normalize to lower case."""
        if not isinstance(v, str) or not v.strip():
            raise FormatError("Permission code cannot be empty", value=v)

        parts = v.strip().split(PERMISSION_SEPARATOR)
        if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
            raise FormatError(
                "Permission code must follow the 'module.action' format", value=v
            )
        return f"{parts[0].strip()}{PERMISSION_SEPARATOR}{parts[1].strip()}".lower()

    @classmethod
    def create(cls, code: str) -> "Permission":
        """
        Build a permission from its code.

        Raises:
            FormatError: If the code is not ``module.action``
        """
        return cls(value=code)

    @classmethod
    def of(cls, module: str, action: str) -> "Permission":
        """Build a permission from its two tokens."""
        return cls(value=f"{module}{PERMISSION_SEPARATOR}{action}")

    @property
    def module(self) -> str:
        return self.value.split(PERMISSION_SEPARATOR)[0]

    @property
    def action(self) -> str:
        return self.value.split(PERMISSION_SEPARATOR)[1]

    def __str__(self) -> str:
        return self.value


PermissionLike = Permission | str


def _as_permission(permission: PermissionLike) -> Permission:
    if isinstance(permission, Permission):
        return permission
    return Permission.create(permission)


class Role(BaseModel):
    """
    Role entity for RBAC.

    Roles group permissions. System roles come from the seed catalog and
    cannot be deleted. ``id == 0`` means the role has not been persisted yet.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: int = Field(default=0, ge=0)
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    is_system_role: bool = Field(default=False)
    permissions: set[Permission] = Field(default_factory=set)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime | None = Field(default=None)

    @field_validator("code")
    @classmethod
    def normalize_role_code(cls, v: str) -> str:
        """Role codes are stored upper-cased and trimmed."""
        v = v.strip().upper()
        if not v:
            raise ValidationError("Role code cannot be empty", field="code")
        return v

    @classmethod
    def create(
        cls,
        code: str,
        name: str,
        description: str | None = None,
        is_system_role: bool = False,
        permissions: Iterable[PermissionLike] = (),
    ) -> "Role":
        """Create a new, not yet persisted role."""
        if not name or not name.strip():
            raise ValidationError("Role name cannot be empty", field="name")
        return cls(
            code=code,
            name=name.strip(),
            description=description.strip() if description else None,
            is_system_role=is_system_role,
            permissions={_as_permission(p) for p in permissions},
        )

    @classmethod
    def reconstruct(
        cls,
        id: int,
        code: str,
        name: str,
        description: str | None,
        is_system_role: bool,
        permissions: Iterable[PermissionLike],
        created_at: datetime,
        updated_at: datetime | None = None,
    ) -> "Role":
        """Rebuild a role from persisted fields."""
        return cls(
            id=id,
            code=code,
            name=name,
            description=description,
            is_system_role=is_system_role,
            permissions={_as_permission(p) for p in permissions},
            created_at=created_at,
            updated_at=updated_at,
        )

    def has_permission(self, permission: PermissionLike) -> bool:
        """True iff the role holds a value-equal permission."""
        if isinstance(permission, Permission):
            return permission in self.permissions
        code = permission.strip().lower()
        return bool(code) and any(p.value == code for p in self.permissions)

    def has_all_permissions(self, *permissions: PermissionLike) -> bool:
        return all(self.has_permission(p) for p in permissions)

    def has_any_permission(self, *permissions: PermissionLike) -> bool:
        return any(self.has_permission(p) for p in permissions)

    def add_permission(self, permission: PermissionLike) -> None:
        """Add a permission to this role."""
        perm = _as_permission(permission)
        if perm not in self.permissions:
            self.permissions = self.permissions | {perm}
            self.updated_at = datetime.utcnow()

    def remove_permission(self, permission: PermissionLike) -> None:
        """Remove a permission from this role."""
        perm = _as_permission(permission)
        if perm in self.permissions:
            self.permissions = self.permissions - {perm}
            self.updated_at = datetime.utcnow()

    def clear_permissions(self) -> None:
        if self.permissions:
            self.permissions = set()
            self.updated_at = datetime.utcnow()

    def ensure_deletable(self) -> None:
        """
        Raises:
            ConflictError: If this is a system role
        """
        if self.is_system_role:
            raise ConflictError(
                f"System role '{self.code}' cannot be deleted", rule_name="system_role"
            )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        if self.id and other.id:
            return self.id == other.id
        return self.code == other.code

    def __hash__(self) -> int:
        return hash(self.code)


class User(BaseModel):
    """
    User as seen by the authorization model.

    Only the role and permission contract is modelled here.
    """

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=200)
    email: str | None = Field(default=None, max_length=255)
    is_active: bool = Field(default=True)
    roles: list[Role] = Field(default_factory=list)

    def assign_role(self, role: Role) -> None:
        """Assign a role; assigning the same code twice is a no-op."""
        if not self.has_role(role.code):
            self.roles.append(role)

    def remove_role(self, code: str) -> None:
        code = code.strip().upper()
        self.roles = [r for r in self.roles if r.code != code]

    def has_role(self, code: str) -> bool:
        if not code or not code.strip():
            return False
        code = code.strip().upper()
        return any(r.code == code for r in self.roles)

    def has_permission(self, permission: PermissionLike) -> bool:
        return any(r.has_permission(permission) for r in self.roles)

    def has_any_permission(self, *permissions: PermissionLike) -> bool:
        return any(self.has_permission(p) for p in permissions)

    def has_all_permissions(self, *permissions: PermissionLike) -> bool:
        if not permissions:
            return False
        return all(self.has_permission(p) for p in permissions)

    def get_all_permissions(self) -> set[Permission]:
        """Union of every role's permissions."""
        result: set[Permission] = set()
        for role in self.roles:
            result |= role.permissions
        return result
