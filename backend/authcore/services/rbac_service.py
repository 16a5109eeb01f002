"""Role-based access control - effective-role resolution and role/permission admin."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from authcore.core.exceptions import (
    AuthorizationError,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
)
from authcore.core.timeutils import utcnow
from authcore.models.rbac import Permission, Role, RolePermission, UserRole
from authcore.models.user import User
from authcore.schemas.rbac import PermissionCreate, PermissionUpdate, RoleCreate, RoleUpdate
from authcore.services.audit_service import audit_service, get_changes

logger = logging.getLogger(__name__)

_ROLE_FIELDS = ("name", "slug", "description", "level", "color", "is_active")
_PERMISSION_FIELDS = ("name", "slug", "description", "category", "is_active")


def _snapshot(obj, fields) -> dict:
    return {field: getattr(obj, field) for field in fields}


class RBACService:
    """
    Resolve what a user may do from their effective roles.

    A role assignment is effective when the assignment is active, not
    expired and the role itself is active. A permission is effective when
    some effective role grants it and the permission is active. Grants only
    ever add; there are no deny rules.
    """

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    @staticmethod
    def _effective_roles(db: Session, user_id: str) -> Query:
        now = utcnow()
        return (
            db.query(Role)
            .join(UserRole, UserRole.role_id == Role.id)
            .filter(
                UserRole.user_id == user_id,
                UserRole.is_active == True,  # noqa: E712
                or_(UserRole.expires_at.is_(None), UserRole.expires_at > now),
                Role.is_active == True,  # noqa: E712
            )
        )

    @staticmethod
    def _effective_permissions(db: Session, user_id: str) -> Query:
        now = utcnow()
        return (
            db.query(Permission.slug)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .join(Role, Role.id == RolePermission.role_id)
            .join(UserRole, UserRole.role_id == Role.id)
            .filter(
                UserRole.user_id == user_id,
                UserRole.is_active == True,  # noqa: E712
                or_(UserRole.expires_at.is_(None), UserRole.expires_at > now),
                Role.is_active == True,  # noqa: E712
                RolePermission.granted == True,  # noqa: E712
                Permission.is_active == True,  # noqa: E712
            )
        )

    @staticmethod
    def has_role(db: Session, user_id: str, role_slug: str) -> bool:
        return (
            RBACService._effective_roles(db, user_id)
            .filter(Role.slug == role_slug)
            .first()
            is not None
        )

    @staticmethod
    def has_any_role(db: Session, user_id: str, role_slugs: List[str]) -> bool:
        if not role_slugs:
            return False
        return (
            RBACService._effective_roles(db, user_id)
            .filter(Role.slug.in_(role_slugs))
            .first()
            is not None
        )

    @staticmethod
    def has_permission(db: Session, user_id: str, permission_slug: str) -> bool:
        return (
            RBACService._effective_permissions(db, user_id)
            .filter(Permission.slug == permission_slug)
            .first()
            is not None
        )

    @staticmethod
    def get_user_roles(db: Session, user_id: str) -> List[str]:
        """Effective role slugs, highest level first."""
        roles = RBACService._effective_roles(db, user_id).order_by(Role.level.desc(), Role.slug).all()
        seen = []
        for role in roles:
            if role.slug not in seen:
                seen.append(role.slug)
        return seen

    @staticmethod
    def get_user_permissions(db: Session, user_id: str) -> List[str]:
        """Sorted, de-duplicated effective permission slugs."""
        rows = RBACService._effective_permissions(db, user_id).distinct().all()
        return sorted({slug for (slug,) in rows})

    @staticmethod
    def require_permission(db: Session, user_id: str, permission_slug: str) -> None:
        if not RBACService.has_permission(db, user_id, permission_slug):
            raise AuthorizationError(f"Permission '{permission_slug}' required")

    @staticmethod
    def require_role(db: Session, user_id: str, role_slug: str) -> None:
        if not RBACService.has_role(db, user_id, role_slug):
            raise AuthorizationError(f"Role '{role_slug}' required")

    @staticmethod
    def require_any_role(db: Session, user_id: str, role_slugs: List[str]) -> None:
        if not RBACService.has_any_role(db, user_id, role_slugs):
            raise AuthorizationError(f"One of roles {', '.join(role_slugs)} required")

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    @staticmethod
    def _check_role_conflict(db: Session, name: Optional[str], slug: Optional[str], exclude_id: Optional[str] = None):
        clauses = []
        if name is not None:
            clauses.append(Role.name == name)
        if slug is not None:
            clauses.append(Role.slug == slug)
        if not clauses:
            return
        query = db.query(Role.id).filter(or_(*clauses))
        if exclude_id:
            query = query.filter(Role.id != exclude_id)
        if query.first():
            raise ResourceAlreadyExistsError("Role")

    @staticmethod
    def get_role(db: Session, role_id: str) -> Role:
        role = db.query(Role).filter(Role.id == role_id).first()
        if not role:
            raise ResourceNotFoundError("Role")
        return role

    @staticmethod
    def list_roles(db: Session, page: int = 1, page_size: int = 50) -> Tuple[List[Role], int]:
        query = db.query(Role)
        total = query.count()
        roles = (
            query.order_by(Role.level.desc(), Role.name)
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return roles, total

    @staticmethod
    def count_role_users(db: Session, role_id: str) -> int:
        return (
            db.query(func.count(UserRole.id))
            .filter(UserRole.role_id == role_id, UserRole.is_active == True)  # noqa: E712
            .scalar()
        )

    @staticmethod
    def role_permissions(role: Role) -> List[Permission]:
        return [rp.permission for rp in role.role_permissions if rp.granted]

    @staticmethod
    def create_role(db: Session, data: RoleCreate, created_by: Optional[str] = None) -> Role:
        if data.is_system:
            raise AuthorizationError("System roles cannot be created")
        RBACService._check_role_conflict(db, data.name, data.slug)

        role = Role(
            name=data.name,
            slug=data.slug,
            description=data.description,
            level=data.level,
            color=data.color,
            is_system=False,
            created_by=created_by,
        )
        db.add(role)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ResourceAlreadyExistsError("Role")
        db.refresh(role)

        audit_service.log_event(
            db,
            action="role.created",
            entity="Role",
            entity_id=role.id,
            user_id=created_by,
            new_values=_snapshot(role, _ROLE_FIELDS),
        )
        logger.info("Role created: %s", role.slug)
        return role

    @staticmethod
    def update_role(db: Session, role_id: str, data: RoleUpdate, updated_by: Optional[str] = None) -> Role:
        role = RBACService.get_role(db, role_id)
        if role.is_system:
            raise AuthorizationError("System roles cannot be modified")

        changes = data.model_dump(exclude_unset=True)
        RBACService._check_role_conflict(db, changes.get("name"), changes.get("slug"), exclude_id=role.id)

        before = _snapshot(role, _ROLE_FIELDS)
        for field, value in changes.items():
            setattr(role, field, value)
        role.updated_by = updated_by
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ResourceAlreadyExistsError("Role")
        db.refresh(role)

        old_values, new_values = get_changes(before, _snapshot(role, _ROLE_FIELDS))
        audit_service.log_event(
            db,
            action="role.updated",
            entity="Role",
            entity_id=role.id,
            user_id=updated_by,
            old_values=old_values,
            new_values=new_values,
        )
        return role

    @staticmethod
    def delete_role(db: Session, role_id: str, deleted_by: Optional[str] = None) -> None:
        role = RBACService.get_role(db, role_id)
        if role.is_system:
            raise AuthorizationError("System roles cannot be deleted")

        before = _snapshot(role, _ROLE_FIELDS)
        db.delete(role)
        db.commit()

        audit_service.log_event(
            db,
            action="role.deleted",
            entity="Role",
            entity_id=role_id,
            user_id=deleted_by,
            old_values=before,
        )
        logger.info("Role deleted: %s", before["slug"])

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    @staticmethod
    def _check_permission_conflict(
        db: Session, name: Optional[str], slug: Optional[str], exclude_id: Optional[str] = None
    ):
        clauses = []
        if name is not None:
            clauses.append(Permission.name == name)
        if slug is not None:
            clauses.append(Permission.slug == slug)
        if not clauses:
            return
        query = db.query(Permission.id).filter(or_(*clauses))
        if exclude_id:
            query = query.filter(Permission.id != exclude_id)
        if query.first():
            raise ResourceAlreadyExistsError("Permission")

    @staticmethod
    def get_permission(db: Session, permission_id: str) -> Permission:
        permission = db.query(Permission).filter(Permission.id == permission_id).first()
        if not permission:
            raise ResourceNotFoundError("Permission")
        return permission

    @staticmethod
    def list_permissions(
        db: Session,
        page: int = 1,
        page_size: int = 100,
        category: Optional[str] = None,
    ) -> Tuple[List[Permission], int]:
        query = db.query(Permission)
        if category:
            query = query.filter(Permission.category == category)
        total = query.count()
        permissions = (
            query.order_by(Permission.name)
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return permissions, total

    @staticmethod
    def create_permission(db: Session, data: PermissionCreate, created_by: Optional[str] = None) -> Permission:
        if data.is_system:
            raise AuthorizationError("System permissions cannot be created")
        RBACService._check_permission_conflict(db, data.name, data.slug)

        permission = Permission(
            name=data.name,
            slug=data.slug,
            description=data.description,
            category=data.category,
            is_system=False,
            created_by=created_by,
        )
        db.add(permission)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ResourceAlreadyExistsError("Permission")
        db.refresh(permission)

        audit_service.log_event(
            db,
            action="permission.created",
            entity="Permission",
            entity_id=permission.id,
            user_id=created_by,
            new_values=_snapshot(permission, _PERMISSION_FIELDS),
        )
        return permission

    @staticmethod
    def update_permission(
        db: Session, permission_id: str, data: PermissionUpdate, updated_by: Optional[str] = None
    ) -> Permission:
        permission = RBACService.get_permission(db, permission_id)
        if permission.is_system:
            raise AuthorizationError("System permissions cannot be modified")

        changes = data.model_dump(exclude_unset=True)
        RBACService._check_permission_conflict(
            db, changes.get("name"), changes.get("slug"), exclude_id=permission.id
        )

        before = _snapshot(permission, _PERMISSION_FIELDS)
        for field, value in changes.items():
            setattr(permission, field, value)
        permission.updated_by = updated_by
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ResourceAlreadyExistsError("Permission")
        db.refresh(permission)

        old_values, new_values = get_changes(before, _snapshot(permission, _PERMISSION_FIELDS))
        audit_service.log_event(
            db,
            action="permission.updated",
            entity="Permission",
            entity_id=permission.id,
            user_id=updated_by,
            old_values=old_values,
            new_values=new_values,
        )
        return permission

    @staticmethod
    def delete_permission(db: Session, permission_id: str, deleted_by: Optional[str] = None) -> None:
        permission = RBACService.get_permission(db, permission_id)
        if permission.is_system:
            raise AuthorizationError("System permissions cannot be deleted")

        before = _snapshot(permission, _PERMISSION_FIELDS)
        db.delete(permission)
        db.commit()

        audit_service.log_event(
            db,
            action="permission.deleted",
            entity="Permission",
            entity_id=permission_id,
            user_id=deleted_by,
            old_values=before,
        )

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    @staticmethod
    def assign_role(
        db: Session,
        user_id: str,
        role_id: str,
        *,
        expires_at: Optional[datetime] = None,
        assigned_by: Optional[str] = None,
    ) -> UserRole:
        """Grant a role, reactivating a previously revoked assignment if one exists."""
        if not db.query(User.id).filter(User.id == user_id).first():
            raise ResourceNotFoundError("User")
        role = db.query(Role).filter(Role.id == role_id, Role.is_active == True).first()  # noqa: E712
        if not role:
            raise ResourceNotFoundError("Role")

        assignment = (
            db.query(UserRole)
            .filter(UserRole.user_id == user_id, UserRole.role_id == role_id)
            .first()
        )
        if assignment:
            assignment.is_active = True
            assignment.expires_at = expires_at
            assignment.assigned_by = assigned_by
            assignment.assigned_at = utcnow()
        else:
            assignment = UserRole(
                user_id=user_id,
                role_id=role_id,
                expires_at=expires_at,
                assigned_by=assigned_by,
            )
            db.add(assignment)
        db.commit()
        db.refresh(assignment)

        audit_service.log_event(
            db,
            action="role.assigned",
            entity="UserRole",
            entity_id=assignment.id,
            user_id=assigned_by,
            new_values={"user_id": user_id, "role": role.slug, "expires_at": expires_at},
        )
        return assignment

    @staticmethod
    def revoke_role(db: Session, user_id: str, role_id: str, revoked_by: Optional[str] = None) -> None:
        assignment = (
            db.query(UserRole)
            .filter(
                UserRole.user_id == user_id,
                UserRole.role_id == role_id,
                UserRole.is_active == True,  # noqa: E712
            )
            .first()
        )
        if not assignment:
            raise ResourceNotFoundError("Role assignment")

        assignment.is_active = False
        db.commit()

        audit_service.log_event(
            db,
            action="role.revoked",
            entity="UserRole",
            entity_id=assignment.id,
            user_id=revoked_by,
            old_values={"user_id": user_id, "role_id": role_id},
        )

    @staticmethod
    def assign_permission(
        db: Session,
        role_id: str,
        permission_id: str,
        *,
        granted: bool = True,
        assigned_by: Optional[str] = None,
    ) -> RolePermission:
        role = RBACService.get_role(db, role_id)
        permission = (
            db.query(Permission)
            .filter(Permission.id == permission_id, Permission.is_active == True)  # noqa: E712
            .first()
        )
        if not permission:
            raise ResourceNotFoundError("Permission")

        grant = (
            db.query(RolePermission)
            .filter(RolePermission.role_id == role_id, RolePermission.permission_id == permission_id)
            .first()
        )
        if grant:
            grant.granted = granted
            grant.assigned_by = assigned_by
        else:
            grant = RolePermission(
                role_id=role_id,
                permission_id=permission_id,
                granted=granted,
                assigned_by=assigned_by,
            )
            db.add(grant)
        db.commit()
        db.refresh(grant)

        audit_service.log_event(
            db,
            action="permission.assigned",
            entity="RolePermission",
            entity_id=grant.id,
            user_id=assigned_by,
            new_values={"role": role.slug, "permission": permission.slug, "granted": granted},
        )
        return grant

    @staticmethod
    def revoke_permission(
        db: Session, role_id: str, permission_id: str, revoked_by: Optional[str] = None
    ) -> None:
        grant = (
            db.query(RolePermission)
            .filter(RolePermission.role_id == role_id, RolePermission.permission_id == permission_id)
            .first()
        )
        if not grant:
            raise ResourceNotFoundError("Permission assignment")

        grant_id = grant.id
        db.delete(grant)
        db.commit()

        audit_service.log_event(
            db,
            action="permission.revoked",
            entity="RolePermission",
            entity_id=grant_id,
            user_id=revoked_by,
            old_values={"role_id": role_id, "permission_id": permission_id},
        )


rbac_service = RBACService()
