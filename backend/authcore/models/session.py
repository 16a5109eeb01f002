"""Session model - one authenticated, device-bound login"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from authcore.core.database import Base
from authcore.core.timeutils import utcnow
from authcore.models.user import new_id


class UserSession(Base):
    """Server-side login session. Active -> Revoked is the only transition."""

    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    device_id = Column(String(36), ForeignKey("devices.id", ondelete="SET NULL"), nullable=True)
    session_token = Column(String(64), unique=True, nullable=False)

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    device_type = Column(String(32), nullable=True)
    device_name = Column(String(255), nullable=True)
    browser = Column(String(64), nullable=True)
    os = Column(String(64), nullable=True)

    last_activity_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_activity_ip = Column(String(64), nullable=True)
    activity_count = Column(Integer, default=0, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    is_revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoked_by = Column(String(36), nullable=True)
    revoked_reason = Column(String(128), nullable=True)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="sessions")
    device = relationship("Device", back_populates="sessions")
    refresh_tokens = relationship("RefreshToken", back_populates="session")

    __table_args__ = (
        Index("idx_sessions_user_active", "user_id", "is_active"),
    )

    @property
    def is_live(self) -> bool:
        return bool(self.is_active) and not self.is_revoked

    def __repr__(self):
        return f"<UserSession(id={self.id}, user_id={self.user_id}, active={self.is_active})>"
