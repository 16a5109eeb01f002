"""Permission administration routes"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from authcore.api.deps import AuthContext, require_permission
from authcore.core.database import get_db
from authcore.schemas.rbac import PermissionCreate, PermissionResponse, PermissionUpdate
from authcore.schemas.response import APIResponse, PaginatedResponse
from authcore.services.rbac_service import rbac_service

router = APIRouter()


@router.get("", response_model=PaginatedResponse[PermissionResponse])
def list_permissions(
    page: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=500),
    category: Optional[str] = None,
    context: AuthContext = Depends(require_permission("permission.read")),
    db: Session = Depends(get_db)
):
    permissions, total = rbac_service.list_permissions(db, page, page_size, category)
    return PaginatedResponse[PermissionResponse](
        items=[PermissionResponse.model_validate(p) for p in permissions],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
def create_permission(
    data: PermissionCreate,
    context: AuthContext = Depends(require_permission("permission.create")),
    db: Session = Depends(get_db)
):
    return rbac_service.create_permission(db, data, context.user_id)


@router.get("/{permission_id}", response_model=PermissionResponse)
def get_permission(
    permission_id: str,
    context: AuthContext = Depends(require_permission("permission.read")),
    db: Session = Depends(get_db)
):
    return rbac_service.get_permission(db, permission_id)


@router.patch("/{permission_id}", response_model=PermissionResponse)
def update_permission(
    permission_id: str,
    data: PermissionUpdate,
    context: AuthContext = Depends(require_permission("permission.update")),
    db: Session = Depends(get_db)
):
    return rbac_service.update_permission(db, permission_id, data, context.user_id)


@router.delete("/{permission_id}", response_model=APIResponse)
def delete_permission(
    permission_id: str,
    context: AuthContext = Depends(require_permission("permission.delete")),
    db: Session = Depends(get_db)
):
    rbac_service.delete_permission(db, permission_id, context.user_id)
    return APIResponse(message="Permission deleted")
