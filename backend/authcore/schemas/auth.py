"""Authentication request/response schemas"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional

from authcore.schemas.user import AuthUser


class TokenResponse(BaseModel):
    """Token pair returned by login, register and refresh"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    session_id: Optional[str] = None
    user: AuthUser


class RefreshTokenRequest(BaseModel):
    """Refresh token request; falls back to the refresh cookie when omitted"""
    refresh_token: Optional[str] = Field(None, min_length=16, max_length=4096)


class LogoutRequest(BaseModel):
    """Optional refresh token to revoke during logout"""
    refresh_token: Optional[str] = Field(None, min_length=16, max_length=4096)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=255)
    new_password: str = Field(..., min_length=8, max_length=72)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)

    @field_validator('email')
    @classmethod
    def email_lowercase(cls, v):
        return v.strip().lower()


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=16, max_length=128)
    new_password: str = Field(..., min_length=8, max_length=72)
