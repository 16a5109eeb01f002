import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from authcore.config import settings
from authcore.core.database import Base
from authcore.core.security import hash_password
from authcore.models.user import Profile, User
from authcore.services.device_service import DeviceInfo

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)


def _make_session_factory(url="sqlite:///:memory:"):
    if url == "sqlite:///:memory:":
        engine = create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    else:
        engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    monkeypatch.setattr(settings, "BCRYPT_ROUNDS", 4)
    monkeypatch.setattr(settings, "REVOKE_FAMILY_ON_REUSE", False)


@pytest.fixture
def session_factory():
    return _make_session_factory()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def device_info():
    return DeviceInfo.from_headers(CHROME_UA, "203.0.113.7")


def _create_user(db, email="a@x.com", password="Secret1!", **fields):
    user = User(email=email, password_hash=hash_password(password), **fields)
    user.profile = Profile()
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def make_user():
    return _create_user
