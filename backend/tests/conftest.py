"""
Pytest configuration and fixtures for the portal tests.

- Unit fixtures: in-memory fakes for the validator's store and division lookup
- Database fixtures: a throwaway SQLite file per test
- API fixtures: FastAPI TestClient with ``get_db`` pointed at that file
"""
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("EVENT_TIMEZONE", "UTC")

from datetime import datetime, timedelta
from itertools import count
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import portal.models  # noqa: F401
from portal.core.database import Base, get_db
from portal.core.exceptions import StaleVersionError, WorkerLookupError
from portal.core.security import create_access_token, get_password_hash
from portal.models.checkin import CheckinCode
from portal.models.user import User

T0 = datetime(2026, 10, 18, 14, 0, 0)


# ============ Unit Test Fakes ============

class FakeStore:
    """In-memory TimeEntryStore."""

    def __init__(self):
        self.entries = []
        self.versions = {}
        self.companions = []
        self._ids = count(1)

    def version(self, worker_id):
        return self.versions.get(worker_id, 0)

    def _latest(self, worker_id, actions=None):
        rows = [
            e for e in self.entries
            if e.user_id == worker_id and (actions is None or e.action in actions)
        ]
        if not rows:
            return None
        return max(rows, key=lambda e: (e.timestamp, e.id))

    def latest_entry(self, worker_id):
        return self._latest(worker_id)

    def latest_clock_entry(self, worker_id):
        return self._latest(worker_id, ("clock_in", "clock_out"))

    def append(self, worker_id, rows, expected_version, companions=None):
        if self.version(worker_id) != expected_version:
            raise StaleVersionError(f"worker {worker_id} moved")
        written = [
            SimpleNamespace(id=next(self._ids), user_id=worker_id, **row)
            for row in rows
        ]
        extra = companions(written) if companions else []
        self.entries.extend(written)
        self.companions.extend(extra)
        self.versions[worker_id] = expected_version + 1
        return written

    def for_worker(self, worker_id):
        return [e for e in self.entries if e.user_id == worker_id]


class FakeDivisions:
    def __init__(self, known=None):
        self.known = known if known is not None else {1: "vendor", 2: "trailers"}

    def get_division(self, worker_id):
        if worker_id not in self.known:
            raise WorkerLookupError(f"Worker {worker_id} not found")
        return self.known[worker_id] or "vendor"


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def validator(store, clock):
    from portal.services.shift_state import ShiftStateValidator
    return ShiftStateValidator(store, FakeDivisions(), clock=clock, max_attempts=3)


# ============ Database Fixtures ============

@pytest.fixture
def engine(tmp_path):
    # A file (not :memory:) so several sessions see the same data
    engine = create_engine(
        f"sqlite:///{tmp_path / 'portal.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def make_user(db, username, role="worker", first_name=None, last_name=None, division="vendor", is_active=True):
    user = User(
        email=f"{username}@example.com",
        username=username,
        first_name=first_name,
        last_name=last_name,
        hashed_password=get_password_hash("password123"),
        role=role,
        division=division,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_code(db, user, code="JD1234", expires_in=timedelta(days=1), is_active=True):
    row = CheckinCode(
        code=code,
        target_user_id=user.id if user else None,
        expires_at=datetime.utcnow() + expires_in,
        is_active=is_active,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture
def worker(db):
    return make_user(db, "jane", first_name="Jane", last_name="Doe")


@pytest.fixture
def manager(db):
    return make_user(db, "boss", role="manager", first_name="Morgan", last_name="Lee")


# ============ API Fixtures ============

@pytest.fixture
def client(session_factory):
    from portal.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def auth_headers(user):
    token = create_access_token({"sub": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def manager_headers(manager):
    return auth_headers(manager)
