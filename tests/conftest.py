"""Shared fixtures: a file-backed SQLite database per test, a controllable
clock, and an app factory wired to both.

A file database rather than ``:memory:`` because request handlers and the
cleanup thread run on different threads and each needs to see the same schema.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from otp_auth.config import Settings
from otp_auth.database import build_engine, build_session_factory, init_db
from otp_auth.exceptions import DeliveryError
from otp_auth.main import create_app
from otp_auth.services.audit import AuditLogStore
from otp_auth.services.otp import OtpLifecycle
from otp_auth.services.users import UserStore

TEST_JWT_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingDispatcher:
    """Stands in for the email/SMS providers and remembers what was sent."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.fail = False

    def send(self, identifier, identifier_type, code, purpose, country_code=None):
        if self.fail:
            raise DeliveryError("provider unavailable")
        self.sent.append(
            {
                "identifier": identifier,
                "identifier_type": identifier_type,
                "code": code,
                "purpose": purpose,
                "country_code": country_code,
            }
        )

    @property
    def last_code(self) -> str:
        return self.sent[-1]["code"]


@pytest.fixture
def engine(tmp_path):
    db_engine = build_engine(f"sqlite:///{tmp_path / 'otp_auth_test.db'}")
    init_db(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def lifecycle(session_factory, clock):
    return OtpLifecycle(session_factory, clock=clock)


@pytest.fixture
def user_store(session_factory, clock):
    return UserStore(session_factory, clock=clock)


@pytest.fixture
def audit_store(session_factory, clock):
    return AuditLogStore(session_factory, clock=clock)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


def build_settings(**overrides) -> Settings:
    values = {
        "app_env": "test",
        "jwt_secret": TEST_JWT_SECRET,
        "cleanup_enabled": False,
        "rate_limit_enabled": False,
        "enable_dummy_otp": False,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings_factory():
    return build_settings


@pytest.fixture
def make_client(engine, clock, dispatcher):
    clients = []

    def _make(**overrides) -> TestClient:
        app = create_app(
            build_settings(**overrides), bind=engine, clock=clock, dispatcher=dispatcher
        )
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()
