"""Security utilities - JWT codec, token hashing, password hashing"""

from datetime import timedelta
from typing import Optional, Dict, Any
import hashlib
import logging
import secrets
import uuid

from jose import ExpiredSignatureError, JWTError, jwt
import bcrypt

from authcore.config import settings
from authcore.core.exceptions import TokenExpiredError, TokenInvalidError
from authcore.core.timeutils import utcnow

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password

    Returns:
        bool: True if password matches
    """
    try:
        return bcrypt.checkpw(
            plain_password.encode('utf-8'),
            hashed_password.encode('utf-8')
        )
    except ValueError:
        # Malformed digest
        return False


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt

    Args:
        password: Plain text password

    Returns:
        str: Hashed password
    """
    return bcrypt.hashpw(
        password.encode('utf-8'),
        bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    ).decode('utf-8')


def _encode(
    data: Dict[str, Any],
    *,
    token_type: str,
    secret: str,
    expires_delta: timedelta,
) -> str:
    to_encode = {k: v for k, v in data.items() if v is not None}
    now = utcnow()
    to_encode.update({
        "jti": str(uuid.uuid4()),
        "type": token_type,
        "iat": now,
        "exp": now + expires_delta,
    })
    return jwt.encode(to_encode, secret, algorithm=settings.JWT_ALGORITHM)


def _decode(token: str, *, token_type: str, secret: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise TokenExpiredError()
    except JWTError:
        raise TokenInvalidError()

    if payload.get("type") != token_type:
        raise TokenInvalidError("Invalid token type")
    if not payload.get("userId"):
        raise TokenInvalidError("Malformed token")
    return payload


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create JWT access token

    Args:
        data: {"userId", "email", "sessionId"?}
        expires_delta: Token expiration time

    Returns:
        str: Encoded JWT token
    """
    return _encode(
        data,
        token_type=ACCESS_TOKEN_TYPE,
        secret=settings.JWT_SECRET,
        expires_delta=expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_refresh_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create JWT refresh token, signed with the refresh secret

    Args:
        data: {"userId", "email", "sessionId"?}
        expires_delta: Token expiration time

    Returns:
        str: Encoded JWT token
    """
    return _encode(
        data,
        token_type=REFRESH_TOKEN_TYPE,
        secret=settings.JWT_REFRESH_SECRET,
        expires_delta=expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    )


def verify_access_token(token: str) -> Dict[str, Any]:
    """
    Decode and verify an access token

    Raises:
        TokenExpiredError: signature valid but past exp
        TokenInvalidError: anything else, including a refresh token
    """
    return _decode(token, token_type=ACCESS_TOKEN_TYPE, secret=settings.JWT_SECRET)


def verify_refresh_token(token: str) -> Dict[str, Any]:
    """
    Decode and verify a refresh token

    Raises:
        TokenExpiredError: signature valid but past exp
        TokenInvalidError: anything else, including an access token
    """
    return _decode(token, token_type=REFRESH_TOKEN_TYPE, secret=settings.JWT_REFRESH_SECRET)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Non-raising variant: payload or None."""
    try:
        return verify_access_token(token)
    except (TokenExpiredError, TokenInvalidError):
        return None


def hash_token(token: str) -> str:
    """One-way digest used as the storage/lookup key for tokens."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_family_id() -> str:
    return str(uuid.uuid4())


def generate_session_token() -> str:
    return str(uuid.uuid4())


def generate_reset_token() -> str:
    return secrets.token_hex(32)
