"""Session, device and login history schemas"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class SessionResponse(BaseModel):
    """Session response schema"""
    id: str
    device_id: Optional[str]
    ip_address: Optional[str]
    user_agent: Optional[str]
    device_type: Optional[str]
    device_name: Optional[str]
    browser: Optional[str]
    os: Optional[str]
    last_activity_at: Optional[datetime]
    last_activity_ip: Optional[str]
    activity_count: int
    is_active: bool
    is_revoked: bool
    revoked_at: Optional[datetime]
    revoked_reason: Optional[str]
    expires_at: Optional[datetime]
    created_at: Optional[datetime]
    is_current: bool = False

    class Config:
        from_attributes = True


class RevokeSessionRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=128)


class DeviceResponse(BaseModel):
    """Device response schema"""
    id: str
    device_id: str
    device_name: Optional[str]
    device_type: Optional[str]
    browser: Optional[str]
    os: Optional[str]
    ip_address: Optional[str]
    is_trusted: bool
    is_blocked: bool
    login_count: int
    first_seen_at: Optional[datetime]
    last_seen_at: Optional[datetime]

    class Config:
        from_attributes = True


class LoginHistoryResponse(BaseModel):
    """Login attempt response schema"""
    id: str
    email: str
    success: bool
    failure_reason: Optional[str]
    device_id: Optional[str]
    ip_address: Optional[str]
    user_agent: Optional[str]
    is_suspicious: bool
    session_id: Optional[str]
    attempted_at: Optional[datetime]

    class Config:
        from_attributes = True
