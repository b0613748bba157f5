from __future__ import annotations

import os

# Settings are read at import time; point them at throwaway values first.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["ENVIRONMENT"] = "test"
os.environ["ROOM_EMAIL_DOMAIN"] = "overmark.local"
os.environ["ROOM_NUMBERS"] = "1-5"
os.environ["FRONTEND_ORIGIN"] = "http://intranet.test"
os.environ["HOME_PATH"] = "/"
os.environ["SYNC_ROOM_PASSWORD_ON_ROTATE"] = "true"
os.environ.pop("SEED_ADMIN_EMAIL", None)
os.environ.pop("SEED_ADMIN_PASSWORD", None)
os.environ.pop("PUBLIC_ORIGIN", None)
os.environ.pop("APP_URL", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Update, text
from sqlalchemy.orm import sessionmaker

from api.routes.auth import reset_login_rate_limits
from core.database import get_db, get_engine
from core.roles import Role
from core.security import hash_password
from main import app
from models import Profile, User
from models.base import Base
from services.auth_backend import REVOKED_TOKENS, DatabaseAuthBackend, TokenRevocationList
from services.room_codes import RoomCodeRegistry


STAFF_PASSWORD = "staff-password"


@pytest.fixture
def engine():
    engine = get_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def registry(db) -> RoomCodeRegistry:
    return RoomCodeRegistry(db)


@pytest.fixture
def revocations() -> TokenRevocationList:
    return TokenRevocationList()


@pytest.fixture
def auth(db, revocations) -> DatabaseAuthBackend:
    return DatabaseAuthBackend(db, revocations=revocations)


def create_user(db, *, email: str, password: str, role: Role, room_number: str | None = None, is_active: bool = True) -> User:
    user = User(email=email, password_hash=hash_password(password), is_active=is_active)
    db.add(user)
    db.flush()
    db.add(Profile(id=user.id, full_name=email, display_name=email, role=role.value, room_number=room_number))
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def staff_user(db) -> User:
    return create_user(db, email="staff@example.com", password=STAFF_PASSWORD, role=Role.STAFF)


@pytest.fixture
def admin_user(db) -> User:
    return create_user(db, email="admin@example.com", password=STAFF_PASSWORD, role=Role.ADMIN)


@pytest.fixture
def client(session_factory):
    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    reset_login_rate_limits()
    REVOKED_TOKENS.clear()
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        reset_login_rate_limits()
        REVOKED_TOKENS.clear()


def login_headers(client: TestClient, email: str, password: str = STAFF_PASSWORD) -> dict[str, str]:
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    # Drop the cookie so later requests authenticate only via the explicit header.
    client.cookies.clear()
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest.fixture
def staff_headers(client, staff_user) -> dict[str, str]:
    return login_headers(client, staff_user.email)


@pytest.fixture
def admin_headers(client, admin_user) -> dict[str, str]:
    return login_headers(client, admin_user.email)


class InterleavedRotation:
    """Session proxy that lets another writer rotate the room right before our conditional update."""

    def __init__(self, db, room_number: str) -> None:
        self._db = db
        self._room_number = room_number
        self._done = False

    def __getattr__(self, name):
        return getattr(self._db, name)

    def execute(self, statement, *args, **kwargs):
        if isinstance(statement, Update) and not self._done:
            self._done = True
            self._db.execute(
                text(
                    "UPDATE room_codes SET is_active = 0, deactivated_at = CURRENT_TIMESTAMP "
                    "WHERE room_number = :room AND is_active = 1"
                ),
                {"room": self._room_number},
            )
        return self._db.execute(statement, *args, **kwargs)
