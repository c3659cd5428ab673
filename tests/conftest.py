import os
from datetime import datetime

import pytest

# Must be set before the clinic package reads its settings
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite:///./test.db"

from fastapi.testclient import TestClient

from clinic.main import app
from clinic.api.deps import get_clock
from clinic.core.database import Base, SessionLocal, engine, get_redis
from clinic.core.security import Role
from clinic.services.access_guard import SessionContext
from clinic.services.identity_service import IdentityStore
from clinic.services.linkage_service import EntityLinkageResolver
from clinic.services.scheduler import AppointmentScheduler

# Bookings in tests are made relative to this instant
FROZEN_NOW = datetime(2025, 2, 1, 8, 0)

PASSWORD = "Password123"

PATIENT_PROFILE = {
    "name": "Alice Moyo",
    "age": 34,
    "gender": "female",
    "contact": "0712345678",
    "address": "12 Hill Road",
    "medical_history": "Asthma",
}

DOCTOR_PROFILE = {
    "name": "Dr. Ken Otieno",
    "specialty": "Cardiology",
    "contact": "0700000001",
    "email": "ken@clinic.test",
    "schedule": "Mon-Fri 09:00-17:00",
}

# Stands in for the bootstrap admin when creating admin accounts in tests
ADMIN_ACTOR = SessionContext(account_id=0, role=Role.ADMIN, username="bootstrap")


class InMemoryRedis:
    """Just enough of the redis client API for the rate limiter."""

    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def setex(self, key, seconds, value):
        self.data[key] = str(value)
        return True

    def incr(self, key):
        self.data[key] = str(int(self.data.get(key, "0")) + 1)
        return int(self.data[key])


def frozen_clock():
    return FROZEN_NOW


@pytest.fixture
def test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(test_db):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_redis():
    return InMemoryRedis()


@pytest.fixture
def client(test_db, fake_redis):
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_clock] = lambda: frozen_clock
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def scheduler(db):
    return AppointmentScheduler(db, clock=frozen_clock)


@pytest.fixture
def make_patient(db):
    """Register a patient account with a linked profile; returns its session."""
    counter = {"n": 0}

    def _make(username=None, **profile):
        counter["n"] += 1
        store = IdentityStore(db)
        account = store.register_account(username or f"patient{counter['n']}", PASSWORD, Role.PATIENT)
        ctx = store.session_for_account(account.id)
        EntityLinkageResolver(db).link_new_entity(ctx, Role.PATIENT, {**PATIENT_PROFILE, **profile})
        return store.session_for_account(account.id)

    return _make


@pytest.fixture
def make_doctor(db):
    counter = {"n": 0}

    def _make(username=None, **profile):
        counter["n"] += 1
        store = IdentityStore(db)
        account = store.register_account(username or f"doctor{counter['n']}", PASSWORD, Role.DOCTOR)
        ctx = store.session_for_account(account.id)
        EntityLinkageResolver(db).link_new_entity(ctx, Role.DOCTOR, {**DOCTOR_PROFILE, **profile})
        return store.session_for_account(account.id)

    return _make


@pytest.fixture
def admin(db):
    store = IdentityStore(db)
    account = store.register_account("admin", PASSWORD, Role.ADMIN, actor=ADMIN_ACTOR)
    return store.session_for_account(account.id)
