"""Security-related persistence models."""

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from authcore.core.database import Base
from authcore.models.user import new_id


class RefreshToken(Base):
    """Refresh token record for rotation/revocation.

    Rows sharing ``family_id`` form a linear chain through ``parent_token_id``;
    at most one row per family is active.
    """

    __tablename__ = "refresh_tokens"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token = Column(Text, nullable=False)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    family_id = Column(String(36), nullable=False, index=True)
    parent_token_id = Column(String(36), ForeignKey("refresh_tokens.id", ondelete="SET NULL"), nullable=True)
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=True, index=True)
    device_id = Column(String(36), ForeignKey("devices.id", ondelete="SET NULL"), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    is_revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoked_by = Column(String(36), nullable=True)
    revoked_reason = Column(String(128), nullable=True)
    rotated_at = Column(DateTime(timezone=True), nullable=True)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="refresh_tokens")
    session = relationship("UserSession", back_populates="refresh_tokens")
    parent = relationship("RefreshToken", remote_side=[id])

    __table_args__ = (
        Index("idx_refresh_tokens_user_family", "user_id", "family_id"),
        Index("idx_refresh_tokens_family_active", "family_id", "is_active"),
    )


class TokenBlacklist(Base):
    """Access tokens invalidated before their natural expiry."""

    __tablename__ = "token_blacklist"

    id = Column(String(36), primary_key=True, default=new_id)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    reason = Column(String(128), nullable=True)
    # Natural expiry of the token, for cleanup
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
