"""User management routes"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from authcore.api.deps import AuthContext, get_auth_context, require_permission
from authcore.core.database import get_db
from authcore.core.exceptions import AuthorizationError
from authcore.schemas.response import APIResponse, PaginatedResponse
from authcore.schemas.user import (
    AuthUser,
    ProfileResponse,
    ProfileUpdate,
    UserCreate,
    UserResponse,
    UserUpdate,
)
from authcore.services.auth_service import auth_service
from authcore.services.user_service import user_service

router = APIRouter()


@router.get("", response_model=PaginatedResponse[UserResponse])
def list_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    context: AuthContext = Depends(require_permission("user.read")),
    db: Session = Depends(get_db)
):
    """
    List users (requires user.read)

    Args:
        search: Optional email/name substring
        is_active: Optional active filter

    Returns:
        One page of users
    """
    users, total = user_service.list_users(db, page, page_size, search, is_active)
    return PaginatedResponse[UserResponse](
        items=[UserResponse.model_validate(u) for u in users],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    user_data: UserCreate,
    context: AuthContext = Depends(require_permission("user.create")),
    db: Session = Depends(get_db)
):
    """Create new user (requires user.create)"""
    return user_service.create_user(db, user_data, context.user_id)


@router.get("/{user_id}", response_model=AuthUser)
def get_user(
    user_id: str,
    context: AuthContext = Depends(require_permission("user.read")),
    db: Session = Depends(get_db)
):
    """User with effective roles and permissions"""
    return auth_service.get_auth_user(db, user_id)


@router.get("/{user_id}/profile", response_model=Optional[ProfileResponse])
def get_profile(
    user_id: str,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """Own profile only; null until one has been saved"""
    if context.user_id != user_id:
        raise AuthorizationError("You can only view your own profile")
    return user_service.get_profile(db, user_id)


@router.patch("/{user_id}/profile", response_model=ProfileResponse)
def update_profile(
    user_id: str,
    data: ProfileUpdate,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    if context.user_id != user_id:
        raise AuthorizationError("You can only update your own profile")
    return user_service.update_profile(db, user_id, data)


@router.patch("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: str,
    data: UserUpdate,
    context: AuthContext = Depends(require_permission("user.update")),
    db: Session = Depends(get_db)
):
    return user_service.update_user(db, user_id, data, context.user_id)


@router.delete("/{user_id}", response_model=APIResponse)
def delete_user(
    user_id: str,
    context: AuthContext = Depends(require_permission("user.delete")),
    db: Session = Depends(get_db)
):
    """
    Deactivate a user and end their sessions (requires user.delete)

    Args:
        user_id: User to deactivate

    Returns:
        Success message
    """
    user_service.delete_user(db, user_id, context.user_id)
    return APIResponse(message="User deactivated")


@router.post("/{user_id}/force-logout", response_model=APIResponse)
def force_logout(
    user_id: str,
    context: AuthContext = Depends(require_permission("session.manage")),
    db: Session = Depends(get_db)
):
    count = user_service.force_logout(db, user_id, context.user_id)
    return APIResponse(message="User sessions revoked", data={"revoked": count})
