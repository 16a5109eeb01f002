"""Authentication routes"""

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session
from typing import Optional

from authcore.api.deps import AuthContext, device_info, get_auth_context, get_current_user
from authcore.config import settings
from authcore.core.database import get_db
from authcore.core.exceptions import TokenInvalidError
from authcore.models.user import User
from authcore.schemas.auth import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LogoutRequest,
    RefreshTokenRequest,
    ResetPasswordRequest,
    TokenResponse,
)
from authcore.schemas.response import APIResponse
from authcore.schemas.user import AuthUser, UserLogin, UserRegister
from authcore.services.auth_service import LoginResult, auth_service

router = APIRouter()


def _set_auth_cookies(response: Response, result: LoginResult) -> None:
    response.set_cookie(
        settings.ACCESS_TOKEN_COOKIE,
        result.access_token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite=settings.COOKIE_SAMESITE,
        path="/",
    )
    response.set_cookie(
        settings.REFRESH_TOKEN_COOKIE,
        result.refresh_token,
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite=settings.COOKIE_SAMESITE,
        path="/",
    )


def _clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(settings.ACCESS_TOKEN_COOKIE, path="/")
    response.delete_cookie(settings.REFRESH_TOKEN_COOKIE, path="/")


def _token_response(result: LoginResult) -> TokenResponse:
    return TokenResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        token_type="bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        session_id=result.session_id,
        user=result.user,
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(
    data: UserRegister,
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
):
    """
    Register a new account and log it in

    Args:
        data: Email, password and optional name
        db: Database session

    Returns:
        Token pair and user view
    """
    result = auth_service.register(db, data, device_info(request))
    _set_auth_cookies(response, result)
    return _token_response(result)


@router.post("/login", response_model=TokenResponse, status_code=status.HTTP_200_OK)
def login(
    credentials: UserLogin,
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
):
    """
    Login endpoint - authenticate user and open a session

    Args:
        credentials: Email and password
        db: Database session

    Returns:
        Token pair and user view
    """
    result = auth_service.login(db, credentials.email, credentials.password, device_info(request))
    _set_auth_cookies(response, result)
    return _token_response(result)


@router.post("/refresh", response_model=TokenResponse)
def refresh_token(
    request: Request,
    response: Response,
    body: Optional[RefreshTokenRequest] = None,
    db: Session = Depends(get_db),
):
    """
    Rotate the refresh token

    The token is read from the body, falling back to the refresh cookie.
    """
    raw = (body.refresh_token if body else None) or request.cookies.get(settings.REFRESH_TOKEN_COOKIE)
    if not raw:
        raise TokenInvalidError("Refresh token required")

    result = auth_service.refresh(db, raw)
    _set_auth_cookies(response, result)
    return _token_response(result)


@router.post("/logout", response_model=APIResponse, status_code=status.HTTP_200_OK)
def logout(
    request: Request,
    response: Response,
    all_sessions: bool = Query(False, alias="all"),
    body: Optional[LogoutRequest] = None,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Logout endpoint - revoke the current session, or every session with ``?all=true``
    """
    refresh = (body.refresh_token if body else None) or request.cookies.get(settings.REFRESH_TOKEN_COOKIE)
    auth_service.logout(
        db,
        context.user_id,
        session_id=None if all_sessions else context.session_id,
        access_token=context.token,
        refresh_token=refresh,
    )
    _clear_auth_cookies(response)
    return APIResponse(message="Logged out successfully")


@router.get("/me", response_model=AuthUser)
def get_current_user_info(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Authenticated user with effective roles and permissions"""
    return auth_service.get_auth_user(db, current_user.id)


@router.post("/change-password", response_model=APIResponse)
def change_password(
    data: ChangePasswordRequest,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    auth_service.change_password(db, context.user_id, data.current_password, data.new_password)
    return APIResponse(message="Password changed successfully")


@router.post("/forgot-password", response_model=APIResponse)
def forgot_password(
    data: ForgotPasswordRequest,
    db: Session = Depends(get_db)
):
    """Same response whether or not the email is registered"""
    auth_service.request_password_reset(db, data.email)
    return APIResponse(message="If the email exists, a reset link has been sent")


@router.post("/reset-password", response_model=APIResponse)
def reset_password(
    data: ResetPasswordRequest,
    db: Session = Depends(get_db)
):
    auth_service.reset_password(db, data.token, data.new_password)
    return APIResponse(message="Password reset successfully")
