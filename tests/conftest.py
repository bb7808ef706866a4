"""Shared test fixtures."""
import os

# must be set before app.core.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret")

from datetime import datetime

import pytest
from botocore.stub import ANY, Stubber
from fastapi.testclient import TestClient

from app.core import clock as clock_module
from app.core import config
from app.core.security import create_access_token
from app.db import base
from app.db.init_db import drop_db, init_db
from app.db.models.service import Service
from app.db.models.user import User
from app.main import app
from app.services import availability_service, storage_service

# Monday
DEFAULT_NOW = datetime(2025, 1, 6, 7, 0)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime):
        self.now = now


@pytest.fixture(autouse=True)
def clock(monkeypatch):
    """Freeze the wall clock every service reads through app.core.clock."""
    frozen = FrozenClock(DEFAULT_NOW)
    monkeypatch.setattr(clock_module, "local_now", frozen)
    return frozen


EVIDENCE_URL = "https://evidence.example.com"


class EvidenceBucket:
    """Queues canned R2 responses; any call that was not queued fails the test."""

    def __init__(self, client):
        self.stubber = Stubber(client)

    def expect_upload(self):
        self.stubber.add_response(
            "put_object", {}, {"Bucket": config.R2_BUCKET_NAME, "Key": ANY, "Body": ANY, "ContentType": ANY}
        )

    def fail_upload(self):
        self.stubber.add_client_error("put_object", service_error_code="InternalError", http_status_code=500)

    def expect_delete(self):
        self.stubber.add_response("delete_object", {}, {"Bucket": config.R2_BUCKET_NAME, "Key": ANY})

    def assert_done(self):
        self.stubber.assert_no_pending_responses()


@pytest.fixture(autouse=True)
def r2(monkeypatch):
    monkeypatch.setattr(config, "R2_ACCOUNT_ID", "test-account")
    monkeypatch.setattr(config, "R2_ACCESS_KEY_ID", "test-key")
    monkeypatch.setattr(config, "R2_SECRET_ACCESS_KEY", "test-secret")
    monkeypatch.setattr(config, "R2_PUBLIC_URL", EVIDENCE_URL)
    client = storage_service.get_r2_client()
    bucket = EvidenceBucket(client)
    monkeypatch.setattr(storage_service, "get_r2_client", lambda: client)
    with bucket.stubber:
        yield bucket


@pytest.fixture
def db():
    init_db()
    session = base.SessionLocal()
    try:
        yield session
    finally:
        session.close()
        drop_db()


@pytest.fixture
def client(db):
    return TestClient(app)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _create(name: str, role: str = "customer", email: str = None, phone: str = None, location: str = None) -> User:
        counter["n"] += 1
        user = User(
            name=name,
            role=role,
            email=email or f"{name.lower().replace(' ', '.')}.{counter['n']}@example.com",
            phone=phone,
            exact_location=location,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _create


@pytest.fixture
def make_service(db):
    def _create(provider: User, name: str = "House cleaning", price: float = 50.0, is_active: bool = True) -> Service:
        service = Service(provider_id=provider.id, name=name, price=price, duration_minutes=60, is_active=is_active)
        db.add(service)
        db.commit()
        db.refresh(service)
        return service

    return _create


@pytest.fixture
def make_slot(db):
    def _create(provider: User, day: str = "Monday", start: str = "09:00", end: str = "10:00", is_active: bool = True):
        return availability_service.add_slot(db, provider.id, day, start, end, is_active=is_active)

    return _create


@pytest.fixture
def alice(make_user):
    return make_user("Alice Santos", role="provider", phone="09170000001")


@pytest.fixture
def bob(make_user):
    return make_user("Bob Reyes")


@pytest.fixture
def carol(make_user):
    return make_user("Carol Cruz")


@pytest.fixture
def alice_service(make_service, alice):
    return make_service(alice)


@pytest.fixture
def monday_slot(make_slot, alice):
    return make_slot(alice, "Monday", "09:00", "10:00")


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}


@pytest.fixture
def auth():
    return auth_headers
