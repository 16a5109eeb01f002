"""Role administration routes"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from authcore.api.deps import AuthContext, require_permission
from authcore.core.database import get_db
from authcore.models.rbac import Role
from authcore.schemas.rbac import (
    AssignPermissionRequest,
    AssignRoleRequest,
    PermissionResponse,
    RoleCreate,
    RoleResponse,
    RoleUpdate,
)
from authcore.schemas.response import APIResponse, PaginatedResponse
from authcore.services.rbac_service import rbac_service

router = APIRouter()


def _role_response(db: Session, role: Role, detailed: bool = False) -> RoleResponse:
    data = RoleResponse.model_validate(role)
    data.user_count = rbac_service.count_role_users(db, role.id)
    if detailed:
        data.permissions = [PermissionResponse.model_validate(p) for p in rbac_service.role_permissions(role)]
    return data


@router.get("", response_model=PaginatedResponse[RoleResponse])
def list_roles(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    context: AuthContext = Depends(require_permission("role.read")),
    db: Session = Depends(get_db)
):
    """List roles, highest level first"""
    roles, total = rbac_service.list_roles(db, page, page_size)
    return PaginatedResponse[RoleResponse](
        items=[_role_response(db, r) for r in roles],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
def create_role(
    data: RoleCreate,
    context: AuthContext = Depends(require_permission("role.create")),
    db: Session = Depends(get_db)
):
    role = rbac_service.create_role(db, data, context.user_id)
    return _role_response(db, role, detailed=True)


@router.post("/assign", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
def assign_role(
    data: AssignRoleRequest,
    context: AuthContext = Depends(require_permission("user.manage-roles")),
    db: Session = Depends(get_db)
):
    """Grant a role to a user, optionally until ``expires_at``"""
    assignment = rbac_service.assign_role(
        db, data.user_id, data.role_id, expires_at=data.expires_at, assigned_by=context.user_id
    )
    return APIResponse(message="Role assigned", data={"id": assignment.id})


@router.delete("/assign/{user_id}/{role_id}", response_model=APIResponse)
def revoke_role(
    user_id: str,
    role_id: str,
    context: AuthContext = Depends(require_permission("user.manage-roles")),
    db: Session = Depends(get_db)
):
    rbac_service.revoke_role(db, user_id, role_id, revoked_by=context.user_id)
    return APIResponse(message="Role revoked")


@router.get("/{role_id}", response_model=RoleResponse)
def get_role(
    role_id: str,
    context: AuthContext = Depends(require_permission("role.read")),
    db: Session = Depends(get_db)
):
    """Role with its granted permissions and active user count"""
    role = rbac_service.get_role(db, role_id)
    return _role_response(db, role, detailed=True)


@router.patch("/{role_id}", response_model=RoleResponse)
def update_role(
    role_id: str,
    data: RoleUpdate,
    context: AuthContext = Depends(require_permission("role.update")),
    db: Session = Depends(get_db)
):
    role = rbac_service.update_role(db, role_id, data, context.user_id)
    return _role_response(db, role, detailed=True)


@router.delete("/{role_id}", response_model=APIResponse)
def delete_role(
    role_id: str,
    context: AuthContext = Depends(require_permission("role.delete")),
    db: Session = Depends(get_db)
):
    rbac_service.delete_role(db, role_id, context.user_id)
    return APIResponse(message="Role deleted")


@router.post("/{role_id}/permissions", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
def assign_permission(
    role_id: str,
    data: AssignPermissionRequest,
    context: AuthContext = Depends(require_permission("role.manage-permissions")),
    db: Session = Depends(get_db)
):
    grant = rbac_service.assign_permission(
        db, role_id, data.permission_id, granted=data.granted, assigned_by=context.user_id
    )
    return APIResponse(message="Permission assigned", data={"id": grant.id})


@router.delete("/{role_id}/permissions/{permission_id}", response_model=APIResponse)
def revoke_permission(
    role_id: str,
    permission_id: str,
    context: AuthContext = Depends(require_permission("role.manage-permissions")),
    db: Session = Depends(get_db)
):
    rbac_service.revoke_permission(db, role_id, permission_id, revoked_by=context.user_id)
    return APIResponse(message="Permission revoked")
