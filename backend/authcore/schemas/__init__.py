"""Pydantic schemas for API validation"""

from authcore.schemas.user import (
    UserLogin,
    UserRegister,
    UserCreate,
    UserUpdate,
    UserResponse,
    ProfileResponse,
    ProfileUpdate,
    AuthUser,
)
from authcore.schemas.auth import (
    TokenResponse,
    RefreshTokenRequest,
    LogoutRequest,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    ResetPasswordRequest,
)
from authcore.schemas.session import (
    SessionResponse,
    RevokeSessionRequest,
    DeviceResponse,
    LoginHistoryResponse,
)
from authcore.schemas.rbac import (
    RoleCreate,
    RoleUpdate,
    RoleResponse,
    PermissionCreate,
    PermissionUpdate,
    PermissionResponse,
    AssignRoleRequest,
    AssignPermissionRequest,
)
from authcore.schemas.response import APIResponse, ErrorResponse, PaginatedResponse, HealthResponse

__all__ = [
    "UserLogin", "UserRegister", "UserCreate", "UserUpdate", "UserResponse", "ProfileResponse", "ProfileUpdate", "AuthUser",
    "TokenResponse", "RefreshTokenRequest", "LogoutRequest",
    "ChangePasswordRequest", "ForgotPasswordRequest", "ResetPasswordRequest",
    "SessionResponse", "RevokeSessionRequest", "DeviceResponse", "LoginHistoryResponse",
    "RoleCreate", "RoleUpdate", "RoleResponse",
    "PermissionCreate", "PermissionUpdate", "PermissionResponse",
    "AssignRoleRequest", "AssignPermissionRequest",
    "APIResponse", "ErrorResponse", "PaginatedResponse", "HealthResponse",
]
