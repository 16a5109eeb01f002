"""User schemas"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime

_EMAIL = r'^[^@\s]+@[^@\s]+\.[^@\s]+$'


def _normalize_email(v: str) -> str:
    return v.strip().lower()


class UserLogin(BaseModel):
    """User login schema"""
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=255)

    @field_validator('email')
    @classmethod
    def email_lowercase(cls, v):
        return _normalize_email(v)


class UserRegister(BaseModel):
    """Self-service registration schema"""
    email: str = Field(..., max_length=255, pattern=_EMAIL)
    password: str = Field(..., min_length=8, max_length=72)
    name: Optional[str] = Field(None, max_length=255)

    @field_validator('email')
    @classmethod
    def email_lowercase(cls, v):
        """Emails are unique case-insensitively"""
        return _normalize_email(v)


class UserCreate(UserRegister):
    """Admin user creation schema"""
    is_active: bool = True
    roles: List[str] = Field(default_factory=list)


class UserUpdate(BaseModel):
    """Admin user update schema"""
    email: Optional[str] = Field(None, max_length=255, pattern=_EMAIL)
    name: Optional[str] = Field(None, max_length=255)
    is_active: Optional[bool] = None
    is_blocked: Optional[bool] = None

    @field_validator('email', 'is_active', 'is_blocked')
    @classmethod
    def not_null(cls, v, info):
        """These columns are NOT NULL; omit the field instead of sending null"""
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v

    @field_validator('email')
    @classmethod
    def email_lowercase(cls, v):
        return _normalize_email(v)


class ProfileUpdate(BaseModel):
    """Self-service profile update; omitted fields are left unchanged"""
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    display_name: Optional[str] = Field(None, max_length=100)
    avatar: Optional[str] = Field(None, max_length=512)


class ProfileResponse(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    display_name: Optional[str] = None
    avatar: Optional[str] = None

    class Config:
        from_attributes = True


class UserResponse(BaseModel):
    """User response schema"""
    id: str
    email: str
    name: Optional[str]
    email_verified: bool
    is_active: bool
    is_blocked: bool
    last_login_at: Optional[datetime]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class AuthUser(BaseModel):
    """Authenticated-user view with effective roles and permissions"""
    id: str
    email: str
    name: Optional[str]
    email_verified: bool
    is_active: bool
    is_blocked: bool
    roles: List[str]
    permissions: List[str]
    profile: Optional[ProfileResponse] = None
