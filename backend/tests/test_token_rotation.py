import threading
from datetime import timedelta

import pytest

from authcore.config import settings
from authcore.core.exceptions import AuthorizationError, TokenExpiredError, TokenInvalidError
from authcore.core.security import create_access_token, verify_access_token
from authcore.core.timeutils import utcnow
from authcore.models.security import RefreshToken, TokenBlacklist
from authcore.services.device_service import device_service
from authcore.services.session_service import session_service
from authcore.services.token_service import token_service

from conftest import _create_user, _make_session_factory


def _login(db, user, device_info):
    device = device_service.find_or_create(db, user.id, device_info.fingerprint, device_info)
    session = session_service.create_session(db, user.id, device, device_info)
    return session, token_service.issue_token_pair(db, user, session=session, device=device)


def test_rotation_links_new_token_into_the_family(db, make_user, device_info):
    user = make_user(db)
    session, pair = _login(db, user, device_info)
    old_id = pair.record.id
    family_id = pair.record.family_id

    result = token_service.rotate_refresh_token(db, pair.refresh_token)

    old = db.get(RefreshToken, old_id)
    assert old.is_active is False
    assert old.is_revoked is True
    assert old.rotated_at is not None
    assert old.revoked_reason == "rotated"

    assert result.record.family_id == family_id
    assert result.record.parent_token_id == old_id
    assert result.record.session_id == session.id
    assert result.record.is_active is True
    assert result.user.id == user.id
    assert verify_access_token(result.access_token)["sessionId"] == session.id

    active = (
        db.query(RefreshToken)
        .filter(RefreshToken.family_id == family_id, RefreshToken.is_active == True)  # noqa: E712
        .all()
    )
    assert [t.id for t in active] == [result.record.id]


def test_chain_of_rotations_stays_linear(db, make_user, device_info):
    user = make_user(db)
    _, pair = _login(db, user, device_info)

    raw = pair.refresh_token
    parent = pair.record.id
    for _ in range(3):
        result = token_service.rotate_refresh_token(db, raw)
        assert result.record.parent_token_id == parent
        raw, parent = result.refresh_token, result.record.id

    assert db.query(RefreshToken).filter(RefreshToken.family_id == pair.record.family_id).count() == 4


def test_replayed_token_is_invalid(db, make_user, device_info):
    user = make_user(db)
    _, pair = _login(db, user, device_info)
    token_service.rotate_refresh_token(db, pair.refresh_token)

    with pytest.raises(TokenInvalidError):
        token_service.rotate_refresh_token(db, pair.refresh_token)


def test_rotated_and_expired_token_reports_invalid_not_expired(db, make_user, device_info):
    user = make_user(db)
    _, pair = _login(db, user, device_info)
    token_service.rotate_refresh_token(db, pair.refresh_token)

    old = db.get(RefreshToken, pair.record.id)
    old.expires_at = utcnow() - timedelta(days=1)
    db.commit()

    with pytest.raises(TokenInvalidError):
        token_service.rotate_refresh_token(db, pair.refresh_token)


def test_active_token_past_stored_expiry_reports_expired(db, make_user, device_info):
    user = make_user(db)
    _, pair = _login(db, user, device_info)

    record = db.get(RefreshToken, pair.record.id)
    record.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    with pytest.raises(TokenExpiredError):
        token_service.rotate_refresh_token(db, pair.refresh_token)


def test_retired_token_with_expired_jwt_reports_invalid(db, make_user, device_info, monkeypatch):
    monkeypatch.setattr(settings, "REFRESH_TOKEN_EXPIRE_DAYS", -1)
    user = make_user(db)
    _, pair = _login(db, user, device_info)

    record = db.get(RefreshToken, pair.record.id)
    record.is_active = False
    record.is_revoked = True
    record.revoked_reason = "rotated"
    db.commit()

    with pytest.raises(TokenInvalidError):
        token_service.rotate_refresh_token(db, pair.refresh_token)


def test_revoked_session_token_with_expired_jwt_reports_invalid(db, make_user, device_info, monkeypatch):
    monkeypatch.setattr(settings, "REFRESH_TOKEN_EXPIRE_DAYS", -1)
    user = make_user(db)
    session, pair = _login(db, user, device_info)
    session_service.revoke(db, session.id)

    with pytest.raises(TokenInvalidError):
        token_service.rotate_refresh_token(db, pair.refresh_token)


def test_active_token_with_expired_jwt_reports_expired(db, make_user, device_info, monkeypatch):
    monkeypatch.setattr(settings, "REFRESH_TOKEN_EXPIRE_DAYS", -1)
    user = make_user(db)
    _, pair = _login(db, user, device_info)

    with pytest.raises(TokenExpiredError):
        token_service.rotate_refresh_token(db, pair.refresh_token)


def test_revoke_refresh_token_checks_owner(db, make_user, device_info):
    alice = make_user(db, email="alice@example.com")
    bob = make_user(db, email="bob@example.com")
    _, pair = _login(db, bob, device_info)

    assert token_service.revoke_refresh_token(db, pair.refresh_token, revoked_by=alice.id) is False
    assert db.get(RefreshToken, pair.record.id).is_active is True

    assert token_service.revoke_refresh_token(db, pair.refresh_token, revoked_by=bob.id) is True
    assert db.get(RefreshToken, pair.record.id).is_active is False
    assert token_service.revoke_refresh_token(db, "unknown", revoked_by=bob.id) is False


def test_unknown_or_forged_token_is_invalid(db):
    with pytest.raises(TokenInvalidError):
        token_service.rotate_refresh_token(db, "not.a.jwt")
    with pytest.raises(TokenInvalidError):
        token_service.rotate_refresh_token(db, create_access_token({"userId": "u", "email": "e"}))


def test_blocked_user_cannot_rotate(db, make_user, device_info):
    user = make_user(db)
    _, pair = _login(db, user, device_info)
    user.is_blocked = True
    db.commit()

    with pytest.raises(AuthorizationError):
        token_service.rotate_refresh_token(db, pair.refresh_token)


def test_family_revoked_on_replay_when_enabled(db, make_user, device_info, monkeypatch):
    monkeypatch.setattr(settings, "REVOKE_FAMILY_ON_REUSE", True)
    user = make_user(db)
    _, pair = _login(db, user, device_info)
    current = token_service.rotate_refresh_token(db, pair.refresh_token)

    with pytest.raises(TokenInvalidError):
        token_service.rotate_refresh_token(db, pair.refresh_token)

    db.expire_all()
    assert db.get(RefreshToken, current.record.id).is_active is False
    with pytest.raises(TokenInvalidError):
        token_service.rotate_refresh_token(db, current.refresh_token)


def test_replay_leaves_family_alone_by_default(db, make_user, device_info):
    user = make_user(db)
    _, pair = _login(db, user, device_info)
    current = token_service.rotate_refresh_token(db, pair.refresh_token)

    with pytest.raises(TokenInvalidError):
        token_service.rotate_refresh_token(db, pair.refresh_token)

    assert token_service.rotate_refresh_token(db, current.refresh_token).record.parent_token_id == current.record.id


def test_concurrent_rotation_has_exactly_one_winner(tmp_path, device_info):
    factory = _make_session_factory(f"sqlite:///{tmp_path / 'rotation.db'}")
    setup = factory()
    try:
        user = _create_user(setup)
        _, pair = _login(setup, user, device_info)
        raw = pair.refresh_token
        family_id = pair.record.family_id
    finally:
        setup.close()

    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def worker():
        db = factory()
        try:
            barrier.wait()
            result = token_service.rotate_refresh_token(db, raw)
            outcome = ("ok", result.record.id)
        except TokenInvalidError:
            outcome = ("invalid", None)
        finally:
            db.close()
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert sorted(kind for kind, _ in outcomes) == ["invalid", "ok"]

    check = factory()
    try:
        active = (
            check.query(RefreshToken)
            .filter(RefreshToken.family_id == family_id, RefreshToken.is_active == True)  # noqa: E712
            .all()
        )
        assert len(active) == 1
        assert check.query(RefreshToken).filter(RefreshToken.family_id == family_id).count() == 2
    finally:
        check.close()


def test_blacklist_access_token(db, make_user):
    user = make_user(db)
    token = create_access_token({"userId": user.id, "email": user.email})

    assert token_service.is_token_blacklisted(db, token) is False
    assert token_service.blacklist_access_token(db, token, user_id=user.id, reason="logout") is True
    assert token_service.blacklist_access_token(db, token, user_id=user.id, reason="logout") is False
    assert token_service.is_token_blacklisted(db, token) is True


def test_purge_expired_blacklist(db, make_user):
    user = make_user(db)
    stale = create_access_token({"userId": user.id, "email": user.email}, expires_delta=timedelta(seconds=-10))
    fresh = create_access_token({"userId": user.id, "email": user.email})
    token_service.blacklist_access_token(db, stale, user_id=user.id)
    token_service.blacklist_access_token(db, fresh, user_id=user.id)

    assert token_service.purge_expired_blacklist(db) == 1
    assert db.query(TokenBlacklist).count() == 1
    assert token_service.is_token_blacklisted(db, fresh) is True
