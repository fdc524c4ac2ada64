"""
Tests for permissions, roles, users and the role catalog.
"""

from datetime import datetime
from uuid import uuid4

import pytest

from shared.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    DuplicateKeyError,
    FormatError,
    NotFoundError,
)
from shared.domain.security import Permission, Role, User
from shared.security import (
    RBACService,
    all_permissions,
    create_default_roles,
    permissions_for_module,
    require_permission,
)
from shared.security.rbac import ADMIN, CONSULTA_INTERNA, DOCENTE, PpaPermissions


class TestPermission:
    def test_code_is_normalized_to_lower_case(self):
        permission = Permission.create("  PPA.Create ")

        assert permission.value == "ppa.create"
        assert permission.module == "ppa"
        assert permission.action == "create"
        assert str(permission) == "ppa.create"

    def test_equality_is_by_value(self):
        assert Permission.create("ppa.view_all") == Permission.of("PPA", "VIEW_ALL")
        assert len({Permission.create("a.b"), Permission.create("A.B")}) == 1

    @pytest.mark.parametrize("code", ["", "   ", "ppa", "ppa.", ".create", "a.b.c", " . "])
    def test_malformed_codes_are_rejected(self, code):
        with pytest.raises(FormatError):
            Permission.create(code)


class TestRole:
    def test_create_accepts_codes_and_permissions(self):
        role = Role.create(
            code="reviewer",
            name="Reviewer",
            permissions=["ppa.view_all", Permission.create("dashboard.view")],
        )

        assert role.code == "REVIEWER"
        assert role.id == 0
        assert role.has_permission("PPA.VIEW_ALL")
        assert role.has_permission(Permission.create("dashboard.view"))
        assert not role.has_permission("ppa.create")

    def test_blank_permission_lookup_is_false(self):
        role = Role.create(code="r", name="R", permissions=["ppa.view_all"])

        assert not role.has_permission("   ")

    def test_add_and_remove_permission(self):
        role = Role.create(code="r", name="R")

        role.add_permission("ppa.update")
        role.add_permission("PPA.UPDATE")
        assert len(role.permissions) == 1
        assert role.updated_at is not None

        role.remove_permission("ppa.update")
        assert role.permissions == set()

    def test_all_and_any(self):
        role = Role.create(code="r", name="R", permissions=["ppa.create", "ppa.update"])

        assert role.has_all_permissions("ppa.create", "ppa.update")
        assert not role.has_all_permissions("ppa.create", "ppa.change_status")
        assert role.has_any_permission("ppa.change_status", "ppa.update")

    def test_system_role_cannot_be_deleted(self):
        role = Role.create(code="sys", name="System", is_system_role=True)

        with pytest.raises(ConflictError):
            role.ensure_deletable()

    def test_equality_by_id_when_persisted_else_by_code(self):
        a = Role.reconstruct(
            id=1, code="A", name="A", description=None, is_system_role=False,
            permissions=[], created_at=datetime.utcnow(),
        )
        b = a.model_copy(update={"code": "B"})
        assert a == b

        assert Role.create(code="same", name="One") == Role.create(code="SAME", name="Two")
        assert Role.create(code="one", name="One") != Role.create(code="two", name="Two")


class TestUser:
    def test_permissions_are_the_union_of_roles(self):
        user = User(name="Ana")
        user.assign_role(Role.create(code="a", name="A", permissions=["ppa.create", "ppa.update"]))
        user.assign_role(Role.create(code="b", name="B", permissions=["ppa.update", "dashboard.view"]))

        assert {p.value for p in user.get_all_permissions()} == {
            "ppa.create",
            "ppa.update",
            "dashboard.view",
        }
        assert user.has_permission("dashboard.view")
        assert not user.has_permission("")

    def test_assign_role_is_idempotent(self):
        user = User(name="Ana")
        role = Role.create(code="a", name="A")

        user.assign_role(role)
        user.assign_role(Role.create(code="A", name="Other"))

        assert len(user.roles) == 1
        assert user.has_role("a")

        user.remove_role("A")
        assert not user.has_role("A")

    def test_has_all_permissions_with_no_arguments_is_false(self):
        user = User(name="Ana", roles=[Role.create(code="a", name="A", permissions=["a.b"])])

        assert user.has_all_permissions() is False
        assert user.has_all_permissions("a.b") is True

    def test_require_permission(self):
        user = User(name="Ana", roles=[Role.create(code="a", name="A", permissions=["ppa.create"])])

        require_permission(user, "ppa.create")
        with pytest.raises(AuthorizationError):
            require_permission(user, PpaPermissions.CHANGE_STATUS)

        user.is_active = False
        with pytest.raises(AuthorizationError):
            require_permission(user, "ppa.create")


class TestCatalog:
    def test_catalog_has_unique_codes(self):
        codes = [p.value for p in all_permissions()]

        assert len(codes) == len(set(codes))
        assert "teachersubjects.manage" in codes

    def test_permissions_for_module(self):
        values = {p.value for p in permissions_for_module("PPA")}

        assert values == {
            "ppa.view_all",
            "ppa.view_own",
            "ppa.create",
            "ppa.update",
            "ppa.change_status",
            "ppa.upload_file",
        }

    def test_default_roles(self):
        roles = {r.code: r for r in create_default_roles()}

        assert set(roles) == {ADMIN, DOCENTE, CONSULTA_INTERNA}
        assert all(r.is_system_role for r in roles.values())

        assert roles[ADMIN].has_permission("ppa.view_all")
        assert not roles[ADMIN].has_permission("ppa.view_own")
        assert roles[DOCENTE].has_permission("ppa.view_own")
        assert not roles[DOCENTE].has_permission("ppa.view_all")
        assert roles[CONSULTA_INTERNA].has_permission("ppa.view_all")
        assert not roles[CONSULTA_INTERNA].has_permission("ppa.create")


class TestRBACService:
    def test_duplicate_role_code_is_rejected(self):
        service = RBACService.with_default_roles()

        with pytest.raises(DuplicateKeyError):
            service.load_role(Role.create(code="admin", name="Another admin"))

    def test_unknown_role(self):
        with pytest.raises(NotFoundError):
            RBACService().get_role("ghost")

    def test_system_roles_cannot_be_deleted(self):
        service = RBACService.with_default_roles()

        with pytest.raises(ConflictError):
            service.delete_role(DOCENTE)

        service.load_role(Role.create(code="temp", name="Temp"))
        service.delete_role("temp")
        with pytest.raises(NotFoundError):
            service.get_role("temp")

    def test_effective_permissions(self):
        service = RBACService.with_default_roles()

        assert service.has_permission([DOCENTE, "unknown"], "ppa.upload_file")
        assert not service.has_permission([CONSULTA_INTERNA], "ppa.upload_file")
        assert PpaPermissions.VIEW_ALL in service.get_effective_permissions([ADMIN])
        assert service.get_effective_permissions([str(uuid4())]) == set()
