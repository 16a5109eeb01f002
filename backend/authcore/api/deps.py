"""API dependencies - request authentication and authorization"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from authcore.config import settings
from authcore.core.database import get_db
from authcore.core.exceptions import TokenExpiredError, TokenInvalidError, UnauthorizedError
from authcore.core.security import verify_access_token
from authcore.models.user import User
from authcore.services.device_service import DeviceInfo
from authcore.services.rbac_service import rbac_service
from authcore.services.session_service import session_service
from authcore.services.token_service import token_service


@dataclass
class AuthContext:
    """Identity carried by a verified access token"""
    user_id: str
    email: Optional[str]
    session_id: Optional[str]
    token: str
    payload: Dict[str, Any]


def extract_token(request: Request) -> Optional[str]:
    """
    Pull the access token from the request

    The access token cookie wins over an ``Authorization: Bearer`` header.
    """
    token = request.cookies.get(settings.ACCESS_TOKEN_COOKIE)
    if token:
        return token

    authorization = request.headers.get("Authorization")
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    return None


def client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else None


def device_info(request: Request) -> DeviceInfo:
    return DeviceInfo.from_headers(request.headers.get("User-Agent"), client_ip(request))


def authenticate_request(db: Session, token: Optional[str], ip_address: Optional[str] = None) -> Optional[AuthContext]:
    """
    Validate an access token against the store

    Args:
        db: Database session
        token: Raw access token, may be None
        ip_address: Client IP recorded on the session touch

    Returns:
        AuthContext, or None when the token is missing, invalid, expired,
        blacklisted or bound to a session that is no longer active
    """
    if not token:
        return None

    try:
        payload = verify_access_token(token)
    except (TokenExpiredError, TokenInvalidError):
        return None

    if token_service.is_token_blacklisted(db, token):
        return None

    session_id = payload.get("sessionId")
    if session_id:
        if session_service.get_active_session(db, session_id) is None:
            return None
        session_service.touch(db, session_id, ip_address)

    return AuthContext(
        user_id=payload["userId"],
        email=payload.get("email"),
        session_id=session_id,
        token=token,
        payload=payload,
    )


def get_auth_context(request: Request, db: Session = Depends(get_db)) -> AuthContext:
    """
    Require an authenticated request

    Raises:
        UnauthorizedError: If no valid access token was presented
    """
    context = authenticate_request(db, extract_token(request), client_ip(request))
    if context is None:
        raise UnauthorizedError("Authentication required")
    return context


def get_current_user(
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
) -> User:
    """
    Get current authenticated user

    Raises:
        UnauthorizedError: If the user no longer exists or is disabled
    """
    user = db.query(User).filter(User.id == context.user_id).first()
    if not user:
        raise UnauthorizedError("User not found")
    if not user.is_active or user.is_blocked:
        raise UnauthorizedError("User account is disabled")
    return user


def require_permission(permission_slug: str):
    """Dependency factory: 403 unless the caller holds ``permission_slug``."""

    def dependency(
        context: AuthContext = Depends(get_auth_context),
        db: Session = Depends(get_db),
    ) -> AuthContext:
        rbac_service.require_permission(db, context.user_id, permission_slug)
        return context

    return dependency


def require_role(role_slug: str):
    """Dependency factory: 403 unless the caller holds ``role_slug``."""

    def dependency(
        context: AuthContext = Depends(get_auth_context),
        db: Session = Depends(get_db),
    ) -> AuthContext:
        rbac_service.require_role(db, context.user_id, role_slug)
        return context

    return dependency
