"""Device model - one row per (user, fingerprint)"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from authcore.core.database import Base
from authcore.core.timeutils import utcnow
from authcore.models.user import new_id


class Device(Base):
    """A recurring client identified by a user-agent + IP fingerprint."""

    __tablename__ = "devices"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    device_id = Column(String(64), nullable=False)
    device_name = Column(String(255), nullable=True)
    device_type = Column(String(32), nullable=True)
    browser = Column(String(64), nullable=True)
    os = Column(String(64), nullable=True)
    ip_address = Column(String(64), nullable=True)
    is_trusted = Column(Boolean, default=False, nullable=False)
    is_blocked = Column(Boolean, default=False, nullable=False)
    blocked_at = Column(DateTime(timezone=True), nullable=True)
    blocked_by = Column(String(36), nullable=True)
    blocked_reason = Column(String(255), nullable=True)
    login_count = Column(Integer, default=1, nullable=False)
    first_seen_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_seen_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="devices")
    sessions = relationship("UserSession", back_populates="device")

    __table_args__ = (
        UniqueConstraint("user_id", "device_id", name="uq_devices_user_device"),
        Index("idx_devices_user_last_seen", "user_id", "last_seen_at"),
    )

    def __repr__(self):
        return f"<Device(id={self.id}, user_id={self.user_id}, logins={self.login_count})>"
