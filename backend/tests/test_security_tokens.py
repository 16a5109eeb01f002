from datetime import timedelta

import pytest
from jose import jwt

from authcore.config import settings
from authcore.core.exceptions import TokenExpiredError, TokenInvalidError
from authcore.core.security import (
    create_access_token,
    create_refresh_token,
    decode_access_token,
    generate_reset_token,
    hash_password,
    hash_token,
    verify_access_token,
    verify_password,
    verify_refresh_token,
)

CLAIMS = {"userId": "u-1", "email": "alice@example.com", "sessionId": "s-1"}


def test_access_token_round_trip():
    token = create_access_token(CLAIMS)
    payload = verify_access_token(token)
    assert payload["userId"] == "u-1"
    assert payload["sessionId"] == "s-1"
    assert payload["type"] == "access"
    assert payload["jti"]


def test_access_token_rejects_refresh_token():
    refresh = create_refresh_token(CLAIMS)
    assert decode_access_token(refresh) is None
    with pytest.raises(TokenInvalidError):
        verify_access_token(refresh)


def test_refresh_token_rejects_access_token():
    access = create_access_token(CLAIMS)
    with pytest.raises(TokenInvalidError):
        verify_refresh_token(access)


def test_type_claim_is_checked_even_with_matching_secret():
    forged = jwt.encode({**CLAIMS, "type": "refresh"}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    with pytest.raises(TokenInvalidError):
        verify_access_token(forged)


def test_expired_token_reports_expiry():
    token = create_access_token(CLAIMS, expires_delta=timedelta(seconds=-5))
    with pytest.raises(TokenExpiredError):
        verify_access_token(token)


def test_tampered_token_is_invalid():
    token = create_access_token(CLAIMS)
    with pytest.raises(TokenInvalidError):
        verify_access_token(token[:-2] + ("AA" if token[-2:] != "AA" else "BB"))


def test_missing_session_claim_is_omitted():
    token = create_refresh_token({"userId": "u-2", "email": "b@example.com", "sessionId": None})
    payload = verify_refresh_token(token)
    assert "sessionId" not in payload


def test_tokens_are_unique_per_issue():
    assert create_refresh_token(CLAIMS) != create_refresh_token(CLAIMS)


def test_hash_token_is_stable_sha256():
    assert hash_token("abc") == hash_token("abc")
    assert len(hash_token("abc")) == 64
    assert hash_token("abc") != hash_token("abd")


def test_reset_token_is_64_hex_chars():
    token = generate_reset_token()
    assert len(token) == 64
    int(token, 16)


def test_password_hash_verify():
    digest = hash_password("Secret1!")
    assert verify_password("Secret1!", digest)
    assert not verify_password("secret1!", digest)


def test_malformed_digest_does_not_verify():
    assert verify_password("Secret1!", "not-a-bcrypt-digest") is False
