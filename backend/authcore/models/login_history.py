"""Login attempt history"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from authcore.core.database import Base
from authcore.core.timeutils import utcnow
from authcore.models.user import new_id


class LoginHistory(Base):
    """Append-only record of every login attempt, successful or not."""

    __tablename__ = "login_history"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    email = Column(String(255), nullable=False, index=True)
    success = Column(Boolean, nullable=False)
    failure_reason = Column(String(64), nullable=True)
    device_id = Column(String(64), nullable=True)  # fingerprint
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    is_suspicious = Column(Boolean, default=False, nullable=False)
    risk_score = Column(Integer, nullable=True)
    session_id = Column(String(36), nullable=True)
    refresh_token_id = Column(String(36), nullable=True)
    attempted_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    user = relationship("User")

    __table_args__ = (
        Index("idx_login_history_user_attempted", "user_id", "attempted_at"),
    )
