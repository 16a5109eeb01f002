"""Session lifecycle - creation, activity tracking, revocation."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from authcore.config import settings
from authcore.core.exceptions import AuthorizationError, ResourceNotFoundError
from authcore.core.security import generate_session_token
from authcore.core.timeutils import utcnow
from authcore.models.device import Device
from authcore.models.login_history import LoginHistory
from authcore.models.session import UserSession
from authcore.services.audit_service import audit_service
from authcore.services.device_service import DeviceInfo
from authcore.services.token_service import token_service

logger = logging.getLogger(__name__)


class SessionService:
    """Owns the Active -> Revoked state machine of login sessions."""

    @staticmethod
    def create_session(
        db: Session,
        user_id: str,
        device: Optional[Device],
        info: DeviceInfo,
    ) -> UserSession:
        """Always a fresh row; sessions are never reused across logins."""
        now = utcnow()
        session = UserSession(
            user_id=user_id,
            device_id=device.id if device else None,
            session_token=generate_session_token(),
            ip_address=info.ip_address,
            user_agent=info.user_agent,
            device_type=info.parsed.device_type,
            device_name=info.parsed.device_name,
            browser=info.parsed.browser,
            os=info.parsed.os,
            last_activity_at=now,
            last_activity_ip=info.ip_address,
            activity_count=0,
            expires_at=now + timedelta(days=settings.SESSION_EXPIRE_DAYS),
        )
        db.add(session)
        db.commit()
        db.refresh(session)
        return session

    @staticmethod
    def is_session_active(session: Optional[UserSession]) -> bool:
        return session is not None and session.is_live

    @staticmethod
    def get_active_session(db: Session, session_id: str) -> Optional[UserSession]:
        session = db.query(UserSession).filter(UserSession.id == session_id).first()
        if not SessionService.is_session_active(session):
            return None
        return session

    @staticmethod
    def touch(db: Session, session_id: str, ip_address: Optional[str] = None) -> None:
        """Record activity on a live session. Never raises."""
        try:
            db.execute(
                update(UserSession)
                .where(
                    UserSession.id == session_id,
                    UserSession.is_active == True,  # noqa: E712
                    UserSession.is_revoked == False,  # noqa: E712
                )
                .values(
                    last_activity_at=utcnow(),
                    last_activity_ip=ip_address,
                    activity_count=UserSession.activity_count + 1,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to record activity for session %s", session_id)

    @staticmethod
    def revoke(
        db: Session,
        session_id: str,
        *,
        revoked_by: Optional[str] = None,
        reason: str = "user_revoked",
    ) -> bool:
        """
        Revoke a session and every active refresh token bound to it

        Both updates commit together. Revoking an already revoked (or
        unknown) session is a no-op that returns False.
        """
        result = db.execute(
            update(UserSession)
            .where(UserSession.id == session_id, UserSession.is_revoked == False)  # noqa: E712
            .values(
                is_active=False,
                is_revoked=True,
                revoked_at=utcnow(),
                revoked_by=revoked_by,
                revoked_reason=reason,
            )
        )
        if result.rowcount == 0:
            db.rollback()
            return False

        tokens = token_service.revoke_for_sessions(
            db, [session_id], revoked_by=revoked_by, reason="session_revoked"
        )
        db.commit()
        logger.info("Revoked session %s (%s), %s refresh token(s)", session_id, reason, tokens)
        return True

    @staticmethod
    def revoke_all_for_user(
        db: Session,
        user_id: str,
        *,
        revoked_by: Optional[str] = None,
        reason: str = "user_revoked_all",
    ) -> int:
        """Revoke every live session of the user plus all their active refresh tokens."""
        result = db.execute(
            update(UserSession)
            .where(UserSession.user_id == user_id, UserSession.is_revoked == False)  # noqa: E712
            .values(
                is_active=False,
                is_revoked=True,
                revoked_at=utcnow(),
                revoked_by=revoked_by,
                revoked_reason=reason,
            )
        )
        tokens = token_service.revoke_for_user(db, user_id, revoked_by=revoked_by, reason=reason)
        db.commit()
        logger.info(
            "Revoked %s session(s) and %s refresh token(s) for user %s (%s)",
            result.rowcount, tokens, user_id, reason,
        )
        return result.rowcount

    @staticmethod
    def list_sessions(
        db: Session,
        user_id: str,
        page: int = 1,
        page_size: int = 20,
        active_only: bool = False,
    ) -> Tuple[List[UserSession], int]:
        query = db.query(UserSession).filter(UserSession.user_id == user_id)
        if active_only:
            query = query.filter(UserSession.is_active == True, UserSession.is_revoked == False)  # noqa: E712
        total = query.count()
        sessions = (
            query.order_by(UserSession.last_activity_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return sessions, total

    @staticmethod
    def get_session(db: Session, session_id: str, user_id: str) -> UserSession:
        session = db.query(UserSession).filter(UserSession.id == session_id).first()
        if not session:
            raise ResourceNotFoundError("Session")
        if session.user_id != user_id:
            raise AuthorizationError("Session belongs to another user")
        return session

    @staticmethod
    def revoke_user_session(
        db: Session,
        session_id: str,
        user_id: str,
        reason: Optional[str] = None,
    ) -> bool:
        """Owner-initiated revocation of one of their sessions."""
        SessionService.get_session(db, session_id, user_id)
        revoked = SessionService.revoke(
            db, session_id, revoked_by=user_id, reason=reason or "user_revoked"
        )
        if revoked:
            audit_service.log_event(
                db, action="session.revoked", entity="Session", entity_id=session_id, user_id=user_id
            )
        return revoked

    @staticmethod
    def list_login_history(
        db: Session,
        user_id: str,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[LoginHistory], int]:
        query = db.query(LoginHistory).filter(LoginHistory.user_id == user_id)
        total = query.count()
        rows = (
            query.order_by(LoginHistory.attempted_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return rows, total


session_service = SessionService()
