"""Database models"""

from authcore.models.user import User, Profile
from authcore.models.device import Device
from authcore.models.session import UserSession
from authcore.models.security import RefreshToken, TokenBlacklist
from authcore.models.rbac import Role, Permission, UserRole, RolePermission
from authcore.models.login_history import LoginHistory
from authcore.models.audit import AuditEvent

__all__ = [
    "User", "Profile", "Device", "UserSession", "RefreshToken", "TokenBlacklist",
    "Role", "Permission", "UserRole", "RolePermission", "LoginHistory", "AuditEvent",
]
