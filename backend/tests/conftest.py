"""
Shared fixtures. DATABASE_URL points at a throw-away SQLite file before app modules are imported;
every test starts from a fresh schema.
"""
import os
import tempfile
import uuid

_TMP_DIR = tempfile.mkdtemp(prefix="learnathome-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ.setdefault("ENV", "test")

import pytest  # noqa: E402

from app.database import Base, SessionLocal, engine, init_db  # noqa: E402
from app.models.user import User  # noqa: E402
from app.services.auth import hash_password  # noqa: E402

PASSWORD = "Passw0rd!"
# bcrypt is slow on purpose; hash once for every fixture user
_PASSWORD_HASH = hash_password(PASSWORD)


class RecordingNotifier:
    """Stands in for NotificationBus in API tests; keeps (type, data, recipients) tuples."""

    def __init__(self):
        self.events: list[tuple[str, dict, set[str]]] = []

    def publish(self, event_type: str, data: dict, recipients) -> None:
        self.events.append((event_type, data, {str(r) for r in recipients if r is not None}))

    def of_type(self, event_type: str) -> list[tuple[str, dict, set[str]]]:
        return [e for e in self.events if e[0] == event_type]


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    init_db()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    """Factory: make_user("teacher", username="alice") -> committed User bound to the db fixture session."""

    def _make(role: str = "student", username: str | None = None, **fields) -> User:
        username = username or f"{role}{uuid.uuid4().hex[:8]}"
        user = User(
            email=fields.pop("email", f"{username}@tests.example.com"),
            username=username,
            firstname=fields.pop("firstname", "Test"),
            lastname=fields.pop("lastname", role.title()),
            password_hash=_PASSWORD_HASH,
            role=role,
            is_confirmed=fields.pop("is_confirmed", True),
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(notifier):
    """TestClient with the notification bus replaced by a RecordingNotifier."""
    from fastapi.testclient import TestClient
    from app.api.deps import get_notifier
    from app.main import app

    app.dependency_overrides[get_notifier] = lambda: notifier
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def login_as():
    """login_as(user): get_current_user is overridden to return that user (loaded in its own session)."""
    from app.api.deps import get_current_user
    from app.main import app

    def _login(user: User) -> None:
        user_id = user.id

        def override_get_current_user():
            session = SessionLocal()
            try:
                u = session.query(User).filter(User.id == user_id).first()
                if not u:
                    raise RuntimeError("Test user not found")
                return u
            finally:
                session.close()

        app.dependency_overrides[get_current_user] = override_get_current_user

    return _login
