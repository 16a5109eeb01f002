"""Generic API response schemas"""

from pydantic import BaseModel, Field
from typing import Optional, Any, Dict, Generic, List, TypeVar

from authcore.core.timeutils import utcnow

T = TypeVar("T")


def _timestamp() -> str:
    return utcnow().isoformat()


class APIResponse(BaseModel):
    """Generic API success response"""
    success: bool = True
    message: str
    data: Optional[Any] = None
    timestamp: str = Field(default_factory=_timestamp)


class ErrorResponse(BaseModel):
    """Generic API error response"""
    success: bool = False
    error: str
    code: str
    details: Optional[Dict[str, Any]] = None
    path: Optional[str] = None
    timestamp: str = Field(default_factory=_timestamp)


class PaginatedResponse(BaseModel, Generic[T]):
    """One page of a listing"""
    items: List[T]
    total: int
    page: int
    page_size: int


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    timestamp: str
