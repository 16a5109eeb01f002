import pytest

from authcore.core.exceptions import AuthorizationError, TokenInvalidError
from authcore.models.audit import AuditEvent
from authcore.models.security import RefreshToken
from authcore.models.session import UserSession
from authcore.services.device_service import device_service
from authcore.services.session_service import session_service
from authcore.services.token_service import token_service


def _open_session(db, user, device_info):
    device = device_service.find_or_create(db, user.id, device_info.fingerprint, device_info)
    session = session_service.create_session(db, user.id, device, device_info)
    pair = token_service.issue_token_pair(db, user, session=session, device=device)
    return session, pair


def test_create_session_always_inserts_a_fresh_row(db, make_user, device_info):
    user = make_user(db)

    first, _ = _open_session(db, user, device_info)
    second, _ = _open_session(db, user, device_info)

    assert first.id != second.id
    assert first.session_token != second.session_token
    assert first.device_id == second.device_id
    assert session_service.is_session_active(first)
    assert first.browser == "Chrome"


def test_touch_updates_activity_of_live_session(db, make_user, device_info):
    user = make_user(db)
    session, _ = _open_session(db, user, device_info)

    session_service.touch(db, session.id, "198.51.100.1")
    session_service.touch(db, session.id, "198.51.100.2")

    db.refresh(session)
    assert session.activity_count == 2
    assert session.last_activity_ip == "198.51.100.2"


def test_touch_ignores_revoked_session(db, make_user, device_info):
    user = make_user(db)
    session, _ = _open_session(db, user, device_info)
    session_service.revoke(db, session.id)

    session_service.touch(db, session.id, "198.51.100.1")

    db.refresh(session)
    assert session.activity_count == 0


def test_touch_never_raises(db, monkeypatch):
    def broken_execute(*args, **kwargs):
        raise RuntimeError("store unavailable")

    monkeypatch.setattr(db, "execute", broken_execute)
    session_service.touch(db, "any-session", "198.51.100.1")


def test_revoke_cascades_to_refresh_tokens(db, make_user, device_info):
    user = make_user(db)
    session, pair = _open_session(db, user, device_info)
    rotated = token_service.rotate_refresh_token(db, pair.refresh_token)

    assert session_service.revoke(db, session.id, revoked_by=user.id, reason="user_logout") is True

    db.expire_all()
    session = db.get(UserSession, session.id)
    assert session.is_active is False
    assert session.is_revoked is True
    assert session.revoked_reason == "user_logout"
    tokens = db.query(RefreshToken).filter(RefreshToken.session_id == session.id).all()
    assert len(tokens) == 2
    assert all(not t.is_active and t.is_revoked for t in tokens)

    with pytest.raises(TokenInvalidError):
        token_service.rotate_refresh_token(db, rotated.refresh_token)
    with pytest.raises(TokenInvalidError):
        token_service.rotate_refresh_token(db, pair.refresh_token)


def test_revoke_is_idempotent(db, make_user, device_info):
    user = make_user(db)
    session, _ = _open_session(db, user, device_info)

    assert session_service.revoke(db, session.id) is True
    assert session_service.revoke(db, session.id) is False
    assert session_service.revoke(db, "no-such-session") is False


def test_revoke_only_touches_that_session(db, make_user, device_info):
    user = make_user(db)
    doomed, _ = _open_session(db, user, device_info)
    kept, kept_pair = _open_session(db, user, device_info)

    session_service.revoke(db, doomed.id)

    assert session_service.get_active_session(db, kept.id) is not None
    assert token_service.rotate_refresh_token(db, kept_pair.refresh_token).record.session_id == kept.id


def test_revoke_all_for_user(db, make_user, device_info):
    user = make_user(db)
    other = make_user(db, email="other@example.com")
    for _ in range(3):
        _open_session(db, user, device_info)
    other_session, _ = _open_session(db, other, device_info)

    assert session_service.revoke_all_for_user(db, user.id, revoked_by=user.id) == 3

    assert (
        db.query(RefreshToken)
        .filter(RefreshToken.user_id == user.id, RefreshToken.is_active == True)  # noqa: E712
        .count()
        == 0
    )
    assert session_service.get_active_session(db, other_session.id) is not None


def test_revoke_user_session_checks_owner_and_audits(db, make_user, device_info):
    owner = make_user(db, email="owner@example.com")
    intruder = make_user(db, email="intruder@example.com")
    session, _ = _open_session(db, owner, device_info)

    with pytest.raises(AuthorizationError):
        session_service.revoke_user_session(db, session.id, intruder.id)

    assert session_service.revoke_user_session(db, session.id, owner.id) is True
    event = db.query(AuditEvent).filter(AuditEvent.action == "session.revoked").one()
    assert event.entity_id == session.id


def test_list_sessions_active_only(db, make_user, device_info):
    user = make_user(db)
    first, _ = _open_session(db, user, device_info)
    _open_session(db, user, device_info)
    session_service.revoke(db, first.id)

    all_sessions, total = session_service.list_sessions(db, user.id)
    live, live_total = session_service.list_sessions(db, user.id, active_only=True)

    assert total == 2 and len(all_sessions) == 2
    assert live_total == 1 and live[0].id != first.id
