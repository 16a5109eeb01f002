from datetime import timedelta

import pytest

from authcore.core.exceptions import (
    AuthorizationError,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
)
from authcore.core.timeutils import utcnow
from authcore.models.audit import AuditEvent
from authcore.models.rbac import Permission, Role, RolePermission, UserRole
from authcore.schemas.rbac import PermissionCreate, PermissionUpdate, RoleCreate, RoleUpdate
from authcore.services.bootstrap import seed_defaults
from authcore.services.rbac_service import rbac_service


def _permission(db, slug):
    permission = Permission(name=slug.title(), slug=slug, category=slug.split(".")[0])
    db.add(permission)
    db.commit()
    return permission


def _role(db, slug, level=10, *permissions):
    role = rbac_service.create_role(db, RoleCreate(name=slug.title(), slug=slug, level=level))
    for permission in permissions:
        rbac_service.assign_permission(db, role.id, permission.id)
    return role


def test_ops_role_scenario(db, make_user):
    user = make_user(db)
    user_read = _permission(db, "user.read")
    _permission(db, "user.delete")

    ops = _role(db, "ops", 40, user_read)
    rbac_service.assign_role(db, user.id, ops.id)

    assert rbac_service.get_user_roles(db, user.id) == ["ops"]
    assert rbac_service.has_permission(db, user.id, "user.read") is True
    assert rbac_service.has_permission(db, user.id, "user.delete") is False


def test_expired_assignment_contributes_nothing(db, make_user):
    user = make_user(db)
    p1 = _permission(db, "report.read")
    p2 = _permission(db, "report.write")
    role_a = _role(db, "reader", 10, p1)
    role_b = _role(db, "writer", 20, p2)

    rbac_service.assign_role(db, user.id, role_a.id)
    rbac_service.assign_role(db, user.id, role_b.id, expires_at=utcnow() - timedelta(minutes=1))

    assert rbac_service.get_user_permissions(db, user.id) == ["report.read"]
    assert rbac_service.get_user_roles(db, user.id) == ["reader"]
    assert rbac_service.has_role(db, user.id, "writer") is False


def test_future_expiry_is_still_effective(db, make_user):
    user = make_user(db)
    role = _role(db, "temp", 5, _permission(db, "temp.use"))
    rbac_service.assign_role(db, user.id, role.id, expires_at=utcnow() + timedelta(hours=1))

    assert rbac_service.has_permission(db, user.id, "temp.use") is True


def test_permissions_are_a_union_across_roles(db, make_user):
    user = make_user(db)
    shared = _permission(db, "shared.read")
    only_a = _permission(db, "a.only")
    only_b = _permission(db, "b.only")
    role_a = _role(db, "role-a", 10, shared, only_a)
    role_b = _role(db, "role-b", 30, shared, only_b)
    rbac_service.assign_role(db, user.id, role_a.id)
    rbac_service.assign_role(db, user.id, role_b.id)

    assert rbac_service.get_user_permissions(db, user.id) == ["a.only", "b.only", "shared.read"]
    assert rbac_service.get_user_roles(db, user.id) == ["role-b", "role-a"]
    assert rbac_service.has_any_role(db, user.id, ["nope", "role-a"]) is True
    assert rbac_service.has_any_role(db, user.id, []) is False


def test_inactive_role_permission_or_grant_is_ignored(db, make_user):
    user = make_user(db)
    p_role_off = _permission(db, "x.role-off")
    p_perm_off = _permission(db, "x.perm-off")
    p_not_granted = _permission(db, "x.not-granted")

    dormant = _role(db, "dormant", 10, p_role_off)
    active = _role(db, "active", 10, p_perm_off)
    rbac_service.assign_permission(db, active.id, p_not_granted.id, granted=False)
    rbac_service.assign_role(db, user.id, dormant.id)
    rbac_service.assign_role(db, user.id, active.id)

    rbac_service.update_role(db, dormant.id, RoleUpdate(is_active=False))
    rbac_service.update_permission(db, p_perm_off.id, PermissionUpdate(is_active=False))

    assert rbac_service.get_user_permissions(db, user.id) == []
    assert rbac_service.get_user_roles(db, user.id) == ["active"]


def test_require_helpers_raise_forbidden(db, make_user):
    user = make_user(db)
    with pytest.raises(AuthorizationError):
        rbac_service.require_permission(db, user.id, "user.read")
    with pytest.raises(AuthorizationError):
        rbac_service.require_role(db, user.id, "admin")


def test_revoke_role_is_soft_and_reassign_reactivates(db, make_user):
    user = make_user(db)
    role = _role(db, "ops", 40, _permission(db, "user.read"))
    rbac_service.assign_role(db, user.id, role.id)

    rbac_service.revoke_role(db, user.id, role.id)
    assert rbac_service.has_role(db, user.id, "ops") is False
    assignment = db.query(UserRole).filter(UserRole.user_id == user.id).one()
    assert assignment.is_active is False

    with pytest.raises(ResourceNotFoundError):
        rbac_service.revoke_role(db, user.id, role.id)

    rbac_service.assign_role(db, user.id, role.id)
    assert db.query(UserRole).filter(UserRole.user_id == user.id).count() == 1
    assert rbac_service.has_role(db, user.id, "ops") is True


def test_assign_role_requires_user_and_active_role(db, make_user):
    user = make_user(db)
    role = _role(db, "ops", 40)
    rbac_service.update_role(db, role.id, RoleUpdate(is_active=False))

    with pytest.raises(ResourceNotFoundError):
        rbac_service.assign_role(db, "missing-user", role.id)
    with pytest.raises(ResourceNotFoundError):
        rbac_service.assign_role(db, user.id, role.id)


def test_revoke_permission_deletes_the_grant(db):
    permission = _permission(db, "user.read")
    role = _role(db, "ops", 40, permission)

    rbac_service.revoke_permission(db, role.id, permission.id)

    assert db.query(RolePermission).count() == 0
    with pytest.raises(ResourceNotFoundError):
        rbac_service.revoke_permission(db, role.id, permission.id)


def test_assign_permission_requires_active_permission(db):
    role = _role(db, "ops", 40)
    permission = _permission(db, "user.read")
    rbac_service.update_permission(db, permission.id, PermissionUpdate(is_active=False))

    with pytest.raises(ResourceNotFoundError):
        rbac_service.assign_permission(db, role.id, permission.id)
    with pytest.raises(ResourceNotFoundError):
        rbac_service.assign_permission(db, "missing-role", permission.id)


def test_duplicate_names_and_slugs_conflict(db):
    rbac_service.create_role(db, RoleCreate(name="Ops", slug="ops"))
    with pytest.raises(ResourceAlreadyExistsError):
        rbac_service.create_role(db, RoleCreate(name="Ops", slug="ops-2"))
    with pytest.raises(ResourceAlreadyExistsError):
        rbac_service.create_role(db, RoleCreate(name="Ops 2", slug="ops"))

    rbac_service.create_permission(db, PermissionCreate(name="Read", slug="thing.read"))
    with pytest.raises(ResourceAlreadyExistsError):
        rbac_service.create_permission(db, PermissionCreate(name="Read again", slug="thing.read"))


def test_system_rows_are_immutable(db):
    seed_defaults(db)
    super_admin = db.query(Role).filter(Role.slug == "super-admin").one()
    user_read = db.query(Permission).filter(Permission.slug == "user.read").one()

    with pytest.raises(AuthorizationError):
        rbac_service.update_role(db, super_admin.id, RoleUpdate(name="Root"))
    with pytest.raises(AuthorizationError):
        rbac_service.delete_role(db, super_admin.id)
    with pytest.raises(AuthorizationError):
        rbac_service.update_permission(db, user_read.id, PermissionUpdate(description="changed"))
    with pytest.raises(AuthorizationError):
        rbac_service.delete_permission(db, user_read.id)
    with pytest.raises(AuthorizationError):
        rbac_service.create_role(db, RoleCreate(name="Fake", slug="fake", is_system=True))
    with pytest.raises(AuthorizationError):
        rbac_service.create_permission(db, PermissionCreate(name="Fake", slug="fake.perm", is_system=True))


def test_update_role_audits_changed_fields_only(db):
    role = _role(db, "ops", 40)

    rbac_service.update_role(db, role.id, RoleUpdate(level=45), updated_by="admin-1")

    event = db.query(AuditEvent).filter(AuditEvent.action == "role.updated").one()
    assert event.user_id == "admin-1"
    assert '"level": 45' in event.new_values
    assert "slug" not in event.new_values


def test_delete_role_removes_assignments(db, make_user):
    user = make_user(db)
    role = _role(db, "ops", 40, _permission(db, "user.read"))
    rbac_service.assign_role(db, user.id, role.id)

    rbac_service.delete_role(db, role.id)

    assert db.query(UserRole).count() == 0
    assert db.query(RolePermission).count() == 0
    with pytest.raises(ResourceNotFoundError):
        rbac_service.get_role(db, role.id)


def test_listing_orders(db):
    seed_defaults(db)
    roles, total = rbac_service.list_roles(db)
    assert total == 5
    assert [r.level for r in roles] == sorted((r.level for r in roles), reverse=True)

    permissions, _ = rbac_service.list_permissions(db, category="session")
    assert [p.slug for p in permissions] == ["session.manage", "session.revoke", "session.read"]


def test_seed_defaults_is_idempotent(db):
    seed_defaults(db)
    seed_defaults(db)

    assert db.query(Role).count() == 5
    super_admin = db.query(Role).filter(Role.slug == "super-admin").one()
    assert len(rbac_service.role_permissions(super_admin)) == db.query(Permission).count()
