"""System RBAC catalogue and bootstrap admin account."""

import logging
from typing import Dict

from sqlalchemy.orm import Session

from authcore.config import settings
from authcore.core.security import hash_password
from authcore.models.rbac import Permission, Role, RolePermission, UserRole
from authcore.models.user import Profile, User

logger = logging.getLogger(__name__)

# slug -> (name, description)
SYSTEM_PERMISSIONS = {
    "user.create": ("Create User", "Permission to create new users"),
    "user.read": ("Read User", "Permission to view user details"),
    "user.update": ("Update User", "Permission to update user information"),
    "user.delete": ("Delete User", "Permission to delete users"),
    "user.manage-roles": ("Manage User Roles", "Permission to assign/remove roles from users"),
    "user.block": ("Block User", "Permission to block/unblock users"),
    "role.create": ("Create Role", "Permission to create new roles"),
    "role.read": ("Read Role", "Permission to view role details"),
    "role.update": ("Update Role", "Permission to update role information"),
    "role.delete": ("Delete Role", "Permission to delete roles"),
    "role.manage-permissions": ("Manage Role Permissions", "Permission to assign/remove permissions from roles"),
    "permission.create": ("Create Permission", "Permission to create new permissions"),
    "permission.read": ("Read Permission", "Permission to view permission details"),
    "permission.update": ("Update Permission", "Permission to update permission information"),
    "permission.delete": ("Delete Permission", "Permission to delete permissions"),
    "session.read": ("View Sessions", "Permission to view user sessions"),
    "session.revoke": ("Revoke Session", "Permission to revoke user sessions"),
    "session.manage": ("Manage All Sessions", "Permission to manage all user sessions"),
    "audit.read": ("View Audit Logs", "Permission to view audit logs"),
    "audit.export": ("Export Audit Logs", "Permission to export audit logs"),
    "dashboard.access": ("Access Dashboard", "Permission to access admin dashboard"),
    "dashboard.analytics": ("View Analytics", "Permission to view dashboard analytics"),
    "settings.manage": ("Manage Settings", "Permission to manage system settings"),
    "settings.read": ("View Settings", "Permission to view system settings"),
}

_ADMIN_PERMISSIONS = [slug for slug in SYSTEM_PERMISSIONS if slug != "settings.manage"]

SYSTEM_ROLES = [
    {
        "name": "Super Admin",
        "slug": "super-admin",
        "description": "Full system access with all permissions",
        "level": 100,
        "color": "#ff4d4f",
        "permissions": list(SYSTEM_PERMISSIONS),
    },
    {
        "name": "Admin",
        "slug": "admin",
        "description": "Administrative access without system settings",
        "level": 90,
        "color": "#1890ff",
        "permissions": _ADMIN_PERMISSIONS,
    },
    {
        "name": "Manager",
        "slug": "manager",
        "description": "Manage users and view reports",
        "level": 50,
        "color": "#52c41a",
        "permissions": [
            "user.create", "user.read", "user.update",
            "session.read", "audit.read", "dashboard.access", "settings.read",
        ],
    },
    {
        "name": "Moderator",
        "slug": "moderator",
        "description": "Moderate users and sessions",
        "level": 30,
        "color": "#faad14",
        "permissions": [
            "user.read", "user.update", "user.block",
            "session.read", "session.revoke", "audit.read", "dashboard.access",
        ],
    },
    {
        "name": "User",
        "slug": "user",
        "description": "Default role for registered users",
        "level": 10,
        "color": "#8c8c8c",
        "permissions": ["user.read", "settings.read"],
    },
]


def _category(slug: str) -> str:
    return slug.split(".", 1)[0]


def seed_permissions(db: Session) -> Dict[str, Permission]:
    existing = {p.slug: p for p in db.query(Permission).filter(Permission.slug.in_(list(SYSTEM_PERMISSIONS)))}
    created = 0
    for slug, (name, description) in SYSTEM_PERMISSIONS.items():
        if slug in existing:
            continue
        permission = Permission(
            name=name,
            slug=slug,
            description=description,
            category=_category(slug),
            is_system=True,
        )
        db.add(permission)
        existing[slug] = permission
        created += 1
    db.flush()
    if created:
        logger.info("Seeded %s system permission(s)", created)
    return existing


def seed_roles(db: Session, permissions: Dict[str, Permission]) -> Dict[str, Role]:
    roles = {}
    for entry in SYSTEM_ROLES:
        role = db.query(Role).filter(Role.slug == entry["slug"]).first()
        if role is None:
            role = Role(
                name=entry["name"],
                slug=entry["slug"],
                description=entry["description"],
                level=entry["level"],
                color=entry["color"],
                is_system=True,
            )
            db.add(role)
            db.flush()
            logger.info("Seeded system role %s", role.slug)

        granted = {rp.permission_id for rp in role.role_permissions}
        for slug in entry["permissions"]:
            permission = permissions[slug]
            if permission.id not in granted:
                db.add(RolePermission(role_id=role.id, permission_id=permission.id, granted=True))
                granted.add(permission.id)
        roles[role.slug] = role
    db.flush()
    return roles


def seed_admin(db: Session, roles: Dict[str, Role]) -> User:
    email = settings.ADMIN_EMAIL.strip().lower()
    admin = db.query(User).filter(User.email == email).first()
    if admin is None:
        admin = User(
            email=email,
            password_hash=hash_password(settings.ADMIN_PASSWORD),
            name="Administrator",
            email_verified=True,
        )
        admin.profile = Profile(display_name="Administrator")
        db.add(admin)
        db.flush()
        logger.info("Created admin user: %s", email)

    super_admin = roles["super-admin"]
    assignment = (
        db.query(UserRole)
        .filter(UserRole.user_id == admin.id, UserRole.role_id == super_admin.id)
        .first()
    )
    if assignment is None:
        db.add(UserRole(user_id=admin.id, role_id=super_admin.id))
    elif not assignment.is_active:
        assignment.is_active = True
        assignment.expires_at = None
    return admin


def seed_defaults(db: Session) -> None:
    """Idempotently create system permissions, system roles and the admin account."""
    try:
        permissions = seed_permissions(db)
        roles = seed_roles(db, permissions)
        seed_admin(db, roles)
        db.commit()
    except Exception:
        db.rollback()
        raise
