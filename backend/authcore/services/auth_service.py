"""Auth orchestrator - login, registration, refresh, logout and password flows"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from authcore.config import settings
from authcore.core.exceptions import (
    AuthorizationError,
    InvalidCredentialsError,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
    TokenInvalidError,
)
from authcore.core.metrics import LOGIN_ATTEMPTS
from authcore.core.security import generate_reset_token, hash_password, verify_password
from authcore.core.timeutils import is_past, utcnow
from authcore.models.login_history import LoginHistory
from authcore.models.user import Profile, User
from authcore.schemas.user import AuthUser, ProfileResponse, UserRegister
from authcore.services.audit_service import audit_service
from authcore.services.device_service import DeviceInfo, device_service
from authcore.services.rbac_service import rbac_service
from authcore.services.session_service import session_service
from authcore.services.token_service import token_service

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    user: AuthUser
    access_token: str
    refresh_token: str
    session_id: Optional[str]


class AuthService:
    """Compose device, session, token and RBAC services into the auth flows"""

    @staticmethod
    def _record_login_attempt(
        db: Session,
        *,
        email: str,
        success: bool,
        device_info: DeviceInfo,
        user_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
        session_id: Optional[str] = None,
        refresh_token_id: Optional[str] = None,
    ) -> None:
        """Append a login history row. Never raises."""
        try:
            db.add(
                LoginHistory(
                    user_id=user_id,
                    email=email,
                    success=success,
                    failure_reason=failure_reason,
                    device_id=device_info.fingerprint,
                    ip_address=device_info.ip_address,
                    user_agent=device_info.user_agent,
                    session_id=session_id,
                    refresh_token_id=refresh_token_id,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to record login attempt for %s", email)

    @staticmethod
    def _fail_login(
        db: Session,
        email: str,
        reason: str,
        device_info: DeviceInfo,
        user_id: Optional[str] = None,
    ) -> None:
        AuthService._record_login_attempt(
            db,
            email=email,
            success=False,
            device_info=device_info,
            user_id=user_id,
            failure_reason=reason,
        )
        LOGIN_ATTEMPTS.labels(reason).inc()
        logger.warning("Login failed for %s: %s", email, reason)

    @staticmethod
    def get_auth_user(db: Session, user_id: str) -> AuthUser:
        """
        Build the authenticated-user view

        Args:
            db: Database session
            user_id: User ID

        Returns:
            User fields plus effective roles and permissions
        """
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise ResourceNotFoundError("User")

        profile = ProfileResponse.model_validate(user.profile) if user.profile else None
        return AuthUser(
            id=user.id,
            email=user.email,
            name=user.name,
            email_verified=user.email_verified,
            is_active=user.is_active,
            is_blocked=user.is_blocked,
            roles=rbac_service.get_user_roles(db, user.id),
            permissions=rbac_service.get_user_permissions(db, user.id),
            profile=profile,
        )

    @staticmethod
    def login(db: Session, email: str, password: str, device_info: DeviceInfo) -> LoginResult:
        """
        Authenticate credentials and open a new session

        Every attempt is recorded in login history, including attempts for
        unknown emails. Unknown email and wrong password fail identically.

        Args:
            db: Database session
            email: Login email
            password: Plain text password
            device_info: Client user agent and IP

        Returns:
            LoginResult with the user view and a fresh token pair
        """
        email = email.strip().lower()
        user = db.query(User).filter(User.email == email).first()

        if not user:
            AuthService._fail_login(db, email, "user_not_found", device_info)
            raise InvalidCredentialsError()

        if not user.is_active:
            AuthService._fail_login(db, email, "user_inactive", device_info, user.id)
            raise AuthorizationError("Account is deactivated")

        if user.is_blocked:
            AuthService._fail_login(db, email, "user_blocked", device_info, user.id)
            raise AuthorizationError("Account is blocked")

        if not verify_password(password, user.password_hash):
            AuthService._fail_login(db, email, "invalid_password", device_info, user.id)
            raise InvalidCredentialsError()

        device = device_service.find_or_create(db, user.id, device_info.fingerprint, device_info)
        session = session_service.create_session(db, user.id, device, device_info)
        pair = token_service.issue_token_pair(db, user, session=session, device=device)

        user.last_login_at = utcnow()
        db.commit()

        AuthService._record_login_attempt(
            db,
            email=email,
            success=True,
            device_info=device_info,
            user_id=user.id,
            session_id=session.id,
            refresh_token_id=pair.record.id,
        )
        LOGIN_ATTEMPTS.labels("success").inc()

        audit_service.log_event(
            db,
            action="user.logged_in",
            entity="User",
            entity_id=user.id,
            user_id=user.id,
            user_email=user.email,
            ip_address=device_info.ip_address,
            user_agent=device_info.user_agent,
        )
        logger.info("User logged in: %s (session %s)", email, session.id)

        return LoginResult(
            user=AuthService.get_auth_user(db, user.id),
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            session_id=session.id,
        )

    @staticmethod
    def register(db: Session, data: UserRegister, device_info: DeviceInfo) -> LoginResult:
        """Create a user with an empty profile, then log in normally."""
        email = data.email.strip().lower()
        if db.query(User.id).filter(User.email == email).first():
            raise ResourceAlreadyExistsError("User")

        user = User(
            email=email,
            password_hash=hash_password(data.password),
            name=data.name,
        )
        user.profile = Profile()
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ResourceAlreadyExistsError("User")
        db.refresh(user)

        audit_service.log_event(
            db,
            action="user.created",
            entity="User",
            entity_id=user.id,
            user_id=user.id,
            user_email=user.email,
            new_values={"email": user.email, "name": user.name},
            ip_address=device_info.ip_address,
            user_agent=device_info.user_agent,
        )
        logger.info("Registered user: %s", email)

        return AuthService.login(db, email, data.password, device_info)

    @staticmethod
    def refresh(db: Session, refresh_token: str) -> LoginResult:
        rotation = token_service.rotate_refresh_token(db, refresh_token)
        return LoginResult(
            user=AuthService.get_auth_user(db, rotation.user.id),
            access_token=rotation.access_token,
            refresh_token=rotation.refresh_token,
            session_id=rotation.record.session_id,
        )

    @staticmethod
    def logout(
        db: Session,
        user_id: str,
        session_id: Optional[str] = None,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
    ) -> None:
        """
        End one session, or every session of the user when ``session_id`` is None

        The presented access token is blacklisted so it stops working before
        its natural expiry. Revoking an already revoked session is a no-op.
        """
        if session_id:
            session_service.revoke(db, session_id, revoked_by=user_id, reason="user_logout")
        else:
            session_service.revoke_all_for_user(db, user_id, revoked_by=user_id, reason="user_logout_all")

        if refresh_token:
            token_service.revoke_refresh_token(db, refresh_token, revoked_by=user_id, reason="user_logout")
        if access_token:
            token_service.blacklist_access_token(db, access_token, user_id=user_id, reason="logout")

        audit_service.log_event(
            db,
            action="user.logged_out",
            entity="User",
            entity_id=user_id,
            user_id=user_id,
            new_values={"session_id": session_id, "all_sessions": session_id is None},
        )
        logger.info("User %s logged out (%s)", user_id, session_id or "all sessions")

    @staticmethod
    def change_password(db: Session, user_id: str, current_password: str, new_password: str) -> None:
        """Replace the password digest. Other sessions stay signed in."""
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise ResourceNotFoundError("User")

        if not verify_password(current_password, user.password_hash):
            raise InvalidCredentialsError("Current password is incorrect")

        user.password_hash = hash_password(new_password)
        db.commit()

        audit_service.log_event(
            db,
            action="user.password_changed",
            entity="User",
            entity_id=user.id,
            user_id=user.id,
            user_email=user.email,
        )
        logger.info("Password changed for user %s", user.id)

    @staticmethod
    def request_password_reset(db: Session, email: str) -> None:
        """Store a one-hour reset token. Silent for unknown emails."""
        email = email.strip().lower()
        user = db.query(User).filter(User.email == email).first()
        if not user:
            return None

        user.reset_password_token = generate_reset_token()
        user.reset_password_expires = utcnow() + timedelta(hours=settings.PASSWORD_RESET_EXPIRE_HOURS)
        db.commit()
        logger.info("Password reset requested for user %s", user.id)
        return None

    @staticmethod
    def reset_password(db: Session, token: str, new_password: str) -> None:
        user = db.query(User).filter(User.reset_password_token == token).first()
        if not user or user.reset_password_expires is None or is_past(user.reset_password_expires):
            raise TokenInvalidError("Invalid or expired reset token")

        user.password_hash = hash_password(new_password)
        user.reset_password_token = None
        user.reset_password_expires = None
        db.commit()

        audit_service.log_event(
            db,
            action="user.password_reset",
            entity="User",
            entity_id=user.id,
            user_id=user.id,
            user_email=user.email,
        )
        logger.info("Password reset completed for user %s", user.id)


auth_service = AuthService()
