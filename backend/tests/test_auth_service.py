from datetime import timedelta

import pytest

from authcore.core.exceptions import (
    AuthorizationError,
    InvalidCredentialsError,
    ResourceAlreadyExistsError,
    TokenInvalidError,
)
from authcore.core.security import verify_access_token, verify_password
from authcore.core.timeutils import utcnow
from authcore.models.audit import AuditEvent
from authcore.models.device import Device
from authcore.models.login_history import LoginHistory
from authcore.models.security import RefreshToken
from authcore.models.session import UserSession
from authcore.models.user import User
from authcore.schemas.user import UserRegister
from authcore.services.auth_service import auth_service
from authcore.services.session_service import session_service
from authcore.services.token_service import token_service


def _history(db, email):
    return db.query(LoginHistory).filter(LoginHistory.email == email).all()


def test_login_opens_one_session_and_one_family(db, make_user, device_info):
    user = make_user(db)

    result = auth_service.login(db, "a@x.com", "Secret1!", device_info)

    sessions = db.query(UserSession).filter(UserSession.user_id == user.id).all()
    tokens = db.query(RefreshToken).filter(RefreshToken.user_id == user.id).all()
    assert len(sessions) == 1
    assert len(tokens) == 1
    assert tokens[0].parent_token_id is None
    assert tokens[0].session_id == sessions[0].id
    assert result.session_id == sessions[0].id
    assert verify_access_token(result.access_token)["sessionId"] == result.session_id
    assert result.user.email == "a@x.com"

    db.refresh(user)
    assert user.last_login_at is not None

    [row] = _history(db, "a@x.com")
    assert row.success is True
    assert row.session_id == result.session_id
    assert row.refresh_token_id == tokens[0].id


def test_login_twice_from_same_device(db, make_user, device_info):
    user = make_user(db)

    first = auth_service.login(db, "a@x.com", "Secret1!", device_info)
    second = auth_service.login(db, "A@X.com ", "Secret1!", device_info)

    assert first.session_id != second.session_id
    [device] = db.query(Device).filter(Device.user_id == user.id).all()
    assert device.login_count == 2
    assert db.query(UserSession).filter(UserSession.user_id == user.id).count() == 2


def test_unknown_email_and_wrong_password_fail_the_same_way(db, make_user, device_info):
    make_user(db)

    with pytest.raises(InvalidCredentialsError) as unknown:
        auth_service.login(db, "ghost@x.com", "Secret1!", device_info)
    with pytest.raises(InvalidCredentialsError) as wrong:
        auth_service.login(db, "a@x.com", "nope", device_info)

    assert unknown.value.message == wrong.value.message
    assert [(h.success, h.failure_reason) for h in _history(db, "ghost@x.com")] == [(False, "user_not_found")]
    assert [(h.success, h.failure_reason) for h in _history(db, "a@x.com")] == [(False, "invalid_password")]
    assert db.query(UserSession).count() == 0


@pytest.mark.parametrize(
    "fields, reason",
    [({"is_active": False}, "user_inactive"), ({"is_blocked": True}, "user_blocked")],
)
def test_disabled_accounts_are_forbidden(db, make_user, device_info, fields, reason):
    make_user(db, **fields)

    with pytest.raises(AuthorizationError):
        auth_service.login(db, "a@x.com", "Secret1!", device_info)

    [row] = _history(db, "a@x.com")
    assert row.success is False
    assert row.failure_reason == reason
    assert db.query(UserSession).count() == 0


def test_register_creates_profile_and_logs_in(db, device_info):
    result = auth_service.register(
        db, UserRegister(email="New@Example.com", password="Secret1!", name="New"), device_info
    )

    user = db.query(User).filter(User.email == "new@example.com").one()
    assert user.profile is not None
    assert result.user.id == user.id
    assert result.user.roles == []
    assert db.query(AuditEvent).filter(AuditEvent.action == "user.created").count() == 1

    with pytest.raises(ResourceAlreadyExistsError):
        auth_service.register(db, UserRegister(email="new@example.com", password="Secret1!"), device_info)


def test_refresh_rotates_and_keeps_session(db, make_user, device_info):
    make_user(db)
    login = auth_service.login(db, "a@x.com", "Secret1!", device_info)

    refreshed = auth_service.refresh(db, login.refresh_token)

    assert refreshed.session_id == login.session_id
    assert refreshed.refresh_token != login.refresh_token
    with pytest.raises(TokenInvalidError):
        auth_service.refresh(db, login.refresh_token)


def test_logout_revokes_session_and_blacklists_access_token(db, make_user, device_info):
    user = make_user(db)
    login = auth_service.login(db, "a@x.com", "Secret1!", device_info)
    other = auth_service.login(db, "a@x.com", "Secret1!", device_info)

    auth_service.logout(
        db,
        user.id,
        session_id=login.session_id,
        access_token=login.access_token,
        refresh_token=login.refresh_token,
    )

    assert session_service.get_active_session(db, login.session_id) is None
    assert session_service.get_active_session(db, other.session_id) is not None
    assert token_service.is_token_blacklisted(db, login.access_token) is True
    with pytest.raises(TokenInvalidError):
        auth_service.refresh(db, login.refresh_token)

    # second logout of the same session is a no-op
    auth_service.logout(db, user.id, session_id=login.session_id)


def test_logout_ignores_another_users_refresh_token(db, make_user, device_info):
    alice = make_user(db, email="alice@example.com")
    make_user(db, email="bob@example.com")
    alice_login = auth_service.login(db, "alice@example.com", "Secret1!", device_info)
    bob_login = auth_service.login(db, "bob@example.com", "Secret1!", device_info)

    auth_service.logout(db, alice.id, session_id=alice_login.session_id, refresh_token=bob_login.refresh_token)

    refreshed = auth_service.refresh(db, bob_login.refresh_token)
    assert refreshed.session_id == bob_login.session_id


def test_logout_everywhere(db, make_user, device_info):
    user = make_user(db)
    sessions = [auth_service.login(db, "a@x.com", "Secret1!", device_info) for _ in range(2)]

    auth_service.logout(db, user.id)

    for login in sessions:
        assert session_service.get_active_session(db, login.session_id) is None


def test_change_password_keeps_sessions(db, make_user, device_info):
    user = make_user(db)
    login = auth_service.login(db, "a@x.com", "Secret1!", device_info)

    with pytest.raises(InvalidCredentialsError):
        auth_service.change_password(db, user.id, "wrong", "NewSecret1!")

    auth_service.change_password(db, user.id, "Secret1!", "NewSecret1!")

    db.refresh(user)
    assert verify_password("NewSecret1!", user.password_hash)
    assert session_service.get_active_session(db, login.session_id) is not None
    auth_service.login(db, "a@x.com", "NewSecret1!", device_info)


def test_password_reset_flow(db, make_user, device_info):
    user = make_user(db)

    auth_service.request_password_reset(db, "A@x.com")
    db.refresh(user)
    token = user.reset_password_token
    assert token and len(token) == 64

    auth_service.reset_password(db, token, "Reset1234!")

    db.refresh(user)
    assert user.reset_password_token is None
    assert verify_password("Reset1234!", user.password_hash)
    with pytest.raises(TokenInvalidError):
        auth_service.reset_password(db, token, "Another123!")


def test_password_reset_for_unknown_email_is_silent(db):
    assert auth_service.request_password_reset(db, "ghost@x.com") is None
    assert db.query(LoginHistory).count() == 0
    assert db.query(User).count() == 0


def test_expired_reset_token_is_invalid(db, make_user):
    user = make_user(db)
    auth_service.request_password_reset(db, "a@x.com")
    db.refresh(user)
    token = user.reset_password_token
    user.reset_password_expires = utcnow() - timedelta(minutes=1)
    db.commit()

    with pytest.raises(TokenInvalidError):
        auth_service.reset_password(db, token, "Reset1234!")
