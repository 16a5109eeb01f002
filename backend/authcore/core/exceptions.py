"""Custom exception classes for the application"""

from typing import Optional, Dict, Any


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# Authentication Errors
class AuthenticationError(BaseAPIException):
    """Base authentication error"""
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, status_code=401)


class UnauthorizedError(AuthenticationError):
    """No usable credential was presented"""
    def __init__(self, message: str = "Not logged in. Please log in to continue."):
        super().__init__(message)


class InvalidCredentialsError(AuthenticationError):
    """Invalid email or password"""
    code = "INVALID_CREDENTIALS"

    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(message)


class TokenExpiredError(AuthenticationError):
    """JWT token has expired"""
    code = "TOKEN_EXPIRED"

    def __init__(self, message: str = "Token has expired"):
        super().__init__(message)


class TokenInvalidError(AuthenticationError):
    """JWT token is invalid"""
    code = "INVALID_TOKEN"

    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


# Authorization Errors
class AuthorizationError(BaseAPIException):
    """Insufficient permissions"""
    code = "FORBIDDEN"

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, status_code=403)


# Resource Errors
class ResourceNotFoundError(BaseAPIException):
    """Resource not found"""
    code = "NOT_FOUND"

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", status_code=404)


class ResourceAlreadyExistsError(BaseAPIException):
    """Resource already exists"""
    code = "ALREADY_EXISTS"

    def __init__(self, resource: str):
        super().__init__(f"{resource} already exists", status_code=409)


# Validation Errors
class ValidationError(BaseAPIException):
    """Validation error"""
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=422, details=details)


# System Errors
class InternalError(BaseAPIException):
    """Unexpected failure inside the core"""
    def __init__(self, message: str = "Internal error"):
        super().__init__(message, status_code=500)
