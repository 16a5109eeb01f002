import pytest
from pydantic import ValidationError

from authcore.core.exceptions import (
    AuthorizationError,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
)
from authcore.core.security import hash_password
from authcore.models.audit import AuditEvent
from authcore.models.user import User
from authcore.schemas.user import ProfileUpdate, UserCreate, UserUpdate
from authcore.services.auth_service import auth_service
from authcore.services.bootstrap import seed_defaults
from authcore.services.rbac_service import rbac_service
from authcore.services.session_service import session_service
from authcore.services.user_service import user_service


def test_create_user_with_roles(db):
    seed_defaults(db)

    user = user_service.create_user(
        db, UserCreate(email="Mod@Example.com", password="Secret1!", roles=["moderator"])
    )

    assert user.email == "mod@example.com"
    assert user.profile is not None
    assert rbac_service.get_user_roles(db, user.id) == ["moderator"]
    assert rbac_service.has_permission(db, user.id, "session.revoke") is True


def test_create_user_rejects_unknown_role_and_duplicates(db, make_user):
    make_user(db, email="taken@example.com")

    with pytest.raises(ResourceNotFoundError):
        user_service.create_user(db, UserCreate(email="new@example.com", password="Secret1!", roles=["ghost"]))
    with pytest.raises(ResourceAlreadyExistsError):
        user_service.create_user(db, UserCreate(email="taken@example.com", password="Secret1!"))


def test_list_users_filters(db, make_user):
    make_user(db, email="alice@example.com", name="Alice")
    make_user(db, email="bob@example.com", name="Bob", is_active=False)

    users, total = user_service.list_users(db, search="ALI")
    assert total == 1 and users[0].email == "alice@example.com"

    inactive, total = user_service.list_users(db, is_active=False)
    assert total == 1 and inactive[0].email == "bob@example.com"


def test_blocking_a_user_ends_their_sessions(db, make_user, device_info):
    user = make_user(db)
    login = auth_service.login(db, "a@x.com", "Secret1!", device_info)

    user_service.update_user(db, user.id, UserUpdate(is_blocked=True), updated_by="admin-1")

    assert session_service.get_active_session(db, login.session_id) is None
    event = db.query(AuditEvent).filter(AuditEvent.action == "user.updated").one()
    assert '"is_blocked": true' in event.new_values


def test_update_user_email_conflict(db, make_user):
    make_user(db, email="alice@example.com")
    bob = make_user(db, email="bob@example.com")

    with pytest.raises(ResourceAlreadyExistsError):
        user_service.update_user(db, bob.id, UserUpdate(email="Alice@example.com"))


def test_delete_user_is_soft(db, make_user, device_info):
    admin = make_user(db, email="admin@example.com")
    user = make_user(db)
    login = auth_service.login(db, "a@x.com", "Secret1!", device_info)

    assert user_service.delete_user(db, user.id, deleted_by=admin.id) is True

    assert user_service.get_user(db, user.id).is_active is False
    assert session_service.get_active_session(db, login.session_id) is None
    with pytest.raises(AuthorizationError):
        user_service.delete_user(db, admin.id, deleted_by=admin.id)


def test_force_logout_counts_sessions(db, make_user, device_info):
    user = make_user(db)
    for _ in range(2):
        auth_service.login(db, "a@x.com", "Secret1!", device_info)

    assert user_service.force_logout(db, user.id, revoked_by="admin-1") == 2
    assert user_service.force_logout(db, user.id) == 0
    with pytest.raises(ResourceNotFoundError):
        user_service.force_logout(db, "missing")


@pytest.mark.parametrize("field", ["email", "is_active", "is_blocked"])
def test_update_schema_rejects_null_for_required_columns(field):
    with pytest.raises(ValidationError):
        UserUpdate(**{field: None})


def test_update_schema_allows_omitted_fields_and_null_name():
    assert UserUpdate().model_dump(exclude_unset=True) == {}
    assert UserUpdate(name=None).model_dump(exclude_unset=True) == {"name": None}


def test_update_profile_keeps_unset_fields_and_audits_the_diff(db, make_user):
    user = make_user(db)
    user_service.update_profile(db, user.id, ProfileUpdate(first_name="Ada", last_name="Lovelace"))

    profile = user_service.update_profile(db, user.id, ProfileUpdate(display_name="ada"))

    assert profile.first_name == "Ada"
    assert profile.last_name == "Lovelace"
    assert profile.display_name == "ada"
    assert user_service.get_profile(db, user.id).id == profile.id

    events = db.query(AuditEvent).filter(AuditEvent.action == "profile.updated").all()
    assert len(events) == 2
    assert all(event.user_id == user.id for event in events)
    [latest] = [event for event in events if "display_name" in event.new_values]
    assert latest.new_values == '{"display_name": "ada"}'


def test_update_profile_creates_a_missing_profile(db):
    user = User(email="bare@example.com", password_hash=hash_password("Secret1!"))
    db.add(user)
    db.commit()
    assert user_service.get_profile(db, user.id) is None

    profile = user_service.update_profile(db, user.id, ProfileUpdate(avatar="https://cdn.example.com/a.png"))

    assert profile.user_id == user.id
    assert profile.avatar == "https://cdn.example.com/a.png"
    assert profile.first_name is None


def test_profile_of_unknown_user_is_not_found(db):
    with pytest.raises(ResourceNotFoundError):
        user_service.get_profile(db, "missing")
    with pytest.raises(ResourceNotFoundError):
        user_service.update_profile(db, "missing", ProfileUpdate(first_name="x"))
