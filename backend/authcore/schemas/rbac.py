"""Role / permission schemas"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

_SLUG = r'^[a-z0-9][a-z0-9._-]*$'


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    slug: str = Field(..., min_length=2, max_length=100, pattern=_SLUG)
    description: Optional[str] = None
    level: int = Field(0, ge=0, le=1000)
    color: Optional[str] = Field(None, max_length=16)
    is_system: bool = False


class RoleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    slug: Optional[str] = Field(None, min_length=2, max_length=100, pattern=_SLUG)
    description: Optional[str] = None
    level: Optional[int] = Field(None, ge=0, le=1000)
    color: Optional[str] = Field(None, max_length=16)
    is_active: Optional[bool] = None


class PermissionCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    slug: str = Field(..., min_length=2, max_length=100, pattern=_SLUG)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=64)
    is_system: bool = False


class PermissionUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    slug: Optional[str] = Field(None, min_length=2, max_length=100, pattern=_SLUG)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=64)
    is_active: Optional[bool] = None


class AssignRoleRequest(BaseModel):
    user_id: str
    role_id: str
    expires_at: Optional[datetime] = None


class AssignPermissionRequest(BaseModel):
    permission_id: str
    granted: bool = True


class PermissionResponse(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str]
    category: Optional[str]
    is_active: bool
    is_system: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class RoleResponse(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str]
    level: int
    color: Optional[str]
    is_active: bool
    is_system: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    user_count: Optional[int] = None
    permissions: Optional[List[PermissionResponse]] = None

    class Config:
        from_attributes = True
