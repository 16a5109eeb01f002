"""Audit event model for sensitive actions."""

from sqlalchemy import Column, String, DateTime, Text, Index
from sqlalchemy.sql import func

from authcore.core.database import Base
from authcore.models.user import new_id


class AuditEvent(Base):
    """Immutable audit events."""

    __tablename__ = "audit_events"

    id = Column(String(36), primary_key=True, default=new_id)
    action = Column(String(64), nullable=False, index=True)
    entity = Column(String(64), nullable=False, index=True)
    entity_id = Column(String(64), nullable=True, index=True)
    user_id = Column(String(36), nullable=True)
    user_email = Column(String(255), nullable=True)
    old_values = Column(Text, nullable=True)
    new_values = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_audit_events_created_at", "created_at"),
    )
