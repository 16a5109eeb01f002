"""Refresh token rotation and revocation service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional
import logging

from jose import JWTError, jwt
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from authcore.config import settings
from authcore.core.exceptions import AuthorizationError, TokenExpiredError, TokenInvalidError
from authcore.core.metrics import TOKEN_ROTATIONS
from authcore.core.security import (
    create_access_token,
    create_refresh_token,
    generate_family_id,
    hash_token,
    verify_refresh_token,
)
from authcore.core.timeutils import is_past, utcnow
from authcore.models.device import Device
from authcore.models.security import RefreshToken, TokenBlacklist
from authcore.models.session import UserSession
from authcore.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    record: RefreshToken


@dataclass
class RotationResult:
    user: User
    access_token: str
    refresh_token: str
    record: RefreshToken


def token_claims(user: User, session_id: Optional[str]) -> dict:
    return {"userId": user.id, "email": user.email, "sessionId": session_id}


class TokenService:
    """Manage refresh-token family lifecycle and the access-token blacklist."""

    @staticmethod
    def _refresh_expiry() -> datetime:
        return utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

    @staticmethod
    def _create_refresh_record(
        db: Session,
        *,
        user_id: str,
        raw_token: str,
        family_id: str,
        parent_token_id: Optional[str] = None,
        session_id: Optional[str] = None,
        device_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> RefreshToken:
        record = RefreshToken(
            user_id=user_id,
            token=raw_token,
            token_hash=hash_token(raw_token),
            family_id=family_id,
            parent_token_id=parent_token_id,
            session_id=session_id,
            device_id=device_id,
            ip_address=ip_address,
            user_agent=user_agent,
            expires_at=TokenService._refresh_expiry(),
            is_active=True,
            is_revoked=False,
        )
        db.add(record)
        db.flush()
        return record

    @staticmethod
    def issue_token_pair(
        db: Session,
        user: User,
        *,
        session: Optional[UserSession] = None,
        device: Optional[Device] = None,
    ) -> TokenPair:
        """Start a new token family bound to ``session``."""
        session_id = session.id if session else None
        claims = token_claims(user, session_id)
        refresh_token = create_refresh_token(claims)
        record = TokenService._create_refresh_record(
            db,
            user_id=user.id,
            raw_token=refresh_token,
            family_id=generate_family_id(),
            session_id=session_id,
            device_id=device.id if device else None,
            ip_address=session.ip_address if session else None,
            user_agent=session.user_agent if session else None,
        )
        access_token = create_access_token(claims)
        db.commit()
        db.refresh(record)
        return TokenPair(access_token=access_token, refresh_token=refresh_token, record=record)

    @staticmethod
    def rotate_refresh_token(db: Session, refresh_token: str) -> RotationResult:
        """
        Exchange a refresh token for a new access/refresh pair.

        The presented row is retired with a conditional UPDATE on its active
        flag, so of two concurrent rotations of the same token exactly one
        succeeds and the other gets TokenInvalidError.
        """
        try:
            result = TokenService._rotate(db, refresh_token)
        except (TokenInvalidError, TokenExpiredError, AuthorizationError):
            TOKEN_ROTATIONS.labels("rejected").inc()
            raise
        TOKEN_ROTATIONS.labels("rotated").inc()
        return result

    @staticmethod
    def _find_record(db: Session, refresh_token: str) -> Optional[RefreshToken]:
        return (
            db.query(RefreshToken)
            .filter(RefreshToken.token_hash == hash_token(refresh_token))
            .first()
        )

    @staticmethod
    def _rotate(db: Session, refresh_token: str) -> RotationResult:
        try:
            verify_refresh_token(refresh_token)
        except TokenExpiredError:
            # A retired token stays Invalid once its JWT has also expired.
            stale = TokenService._find_record(db, refresh_token)
            if stale is None or not stale.is_active or stale.is_revoked:
                raise TokenInvalidError("Refresh token already used or revoked")
            raise

        record = TokenService._find_record(db, refresh_token)
        if not record:
            raise TokenInvalidError("Refresh token not recognized")

        if not record.is_active or record.is_revoked:
            logger.warning("Replay of retired refresh token %s (family %s)", record.id, record.family_id)
            if settings.REVOKE_FAMILY_ON_REUSE:
                TokenService.revoke_family(db, record.family_id, reason="token_reuse")
            raise TokenInvalidError("Refresh token already used or revoked")

        now = utcnow()
        if is_past(record.expires_at, now):
            raise TokenExpiredError("Refresh token expired")

        user = record.user
        if not user or not user.is_active or user.is_blocked:
            raise AuthorizationError("User account is disabled")

        if record.session_id is not None:
            session = record.session
            if session is None or not session.is_live:
                raise TokenInvalidError("Session is no longer active")

        old_id = record.id
        family_id = record.family_id
        session_id = record.session_id
        device_id = record.device_id
        ip_address = record.ip_address
        user_agent = record.user_agent

        retired = db.execute(
            update(RefreshToken)
            .where(
                RefreshToken.id == old_id,
                RefreshToken.is_active == True,  # noqa: E712
                RefreshToken.is_revoked == False,  # noqa: E712
            )
            .values(
                is_active=False,
                is_revoked=True,
                revoked_at=now,
                rotated_at=now,
                revoked_reason="rotated",
            )
        )
        if retired.rowcount == 0:
            db.rollback()
            raise TokenInvalidError("Refresh token already used or revoked")

        claims = token_claims(user, session_id)
        new_refresh = create_refresh_token(claims)
        new_record = TokenService._create_refresh_record(
            db,
            user_id=user.id,
            raw_token=new_refresh,
            family_id=family_id,
            parent_token_id=old_id,
            session_id=session_id,
            device_id=device_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        new_access = create_access_token(claims)
        db.commit()
        db.refresh(new_record)

        logger.info("Rotated refresh token %s -> %s (family %s)", old_id, new_record.id, family_id)
        return RotationResult(user=user, access_token=new_access, refresh_token=new_refresh, record=new_record)

    @staticmethod
    def revoke_family(
        db: Session,
        family_id: str,
        *,
        revoked_by: Optional[str] = None,
        reason: str = "family_revoked",
    ) -> int:
        now = utcnow()
        result = db.execute(
            update(RefreshToken)
            .where(RefreshToken.family_id == family_id, RefreshToken.is_active == True)  # noqa: E712
            .values(
                is_active=False,
                is_revoked=True,
                revoked_at=now,
                revoked_by=revoked_by,
                revoked_reason=reason,
            )
        )
        db.commit()
        if result.rowcount:
            logger.warning("Revoked %s active token(s) in family %s (%s)", result.rowcount, family_id, reason)
        return result.rowcount

    @staticmethod
    def revoke_for_sessions(
        db: Session,
        session_ids: Iterable[str],
        *,
        revoked_by: Optional[str],
        reason: str,
    ) -> int:
        """Mark every active token of the sessions revoked. Caller commits."""
        ids = list(session_ids)
        if not ids:
            return 0
        result = db.execute(
            update(RefreshToken)
            .where(RefreshToken.session_id.in_(ids), RefreshToken.is_active == True)  # noqa: E712
            .values(
                is_active=False,
                is_revoked=True,
                revoked_at=utcnow(),
                revoked_by=revoked_by,
                revoked_reason=reason,
            )
        )
        return result.rowcount

    @staticmethod
    def revoke_for_user(db: Session, user_id: str, *, revoked_by: Optional[str], reason: str) -> int:
        """Mark every active token of the user revoked. Caller commits."""
        result = db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.is_active == True)  # noqa: E712
            .values(
                is_active=False,
                is_revoked=True,
                revoked_at=utcnow(),
                revoked_by=revoked_by,
                revoked_reason=reason,
            )
        )
        return result.rowcount

    @staticmethod
    def revoke_refresh_token(
        db: Session,
        refresh_token: str,
        *,
        revoked_by: Optional[str] = None,
        reason: str = "user_logout",
    ) -> bool:
        """Retire a refresh token. Only its owner may revoke it when ``revoked_by`` is given."""
        record = TokenService._find_record(db, refresh_token)
        if not record:
            return False
        if revoked_by is not None and record.user_id != revoked_by:
            logger.warning("User %s tried to revoke refresh token %s of another user", revoked_by, record.id)
            return False
        if record.is_active:
            record.is_active = False
            record.is_revoked = True
            record.revoked_at = utcnow()
            record.revoked_by = revoked_by
            record.revoked_reason = reason
            db.commit()
        return True

    @staticmethod
    def blacklist_access_token(
        db: Session,
        access_token: str,
        *,
        user_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> bool:
        """Invalidate an access token before its natural expiry."""
        try:
            exp = jwt.get_unverified_claims(access_token).get("exp")
        except JWTError:
            exp = None
        if exp:
            expires_at = datetime.fromtimestamp(int(exp), tz=timezone.utc)
        else:
            expires_at = utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

        db.add(
            TokenBlacklist(
                token_hash=hash_token(access_token),
                user_id=user_id,
                reason=reason,
                expires_at=expires_at,
            )
        )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return False
        return True

    @staticmethod
    def is_token_blacklisted(db: Session, access_token: str) -> bool:
        return (
            db.query(TokenBlacklist.id)
            .filter(TokenBlacklist.token_hash == hash_token(access_token))
            .first()
            is not None
        )

    @staticmethod
    def purge_expired_blacklist(db: Session) -> int:
        count = (
            db.query(TokenBlacklist)
            .filter(TokenBlacklist.expires_at < utcnow())
            .delete(synchronize_session=False)
        )
        db.commit()
        return count


token_service = TokenService()
