import os

# Settings are read at import time; point everything at throwaway values
os.environ["SUPABASE_URL"] = "http://localhost:54321"
os.environ["SUPABASE_KEY"] = "anon-test-key"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "service-role-test-key"

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from app.database import engine
from app.main import app
from app.models.checkout_session import CheckoutSession
from tests.helpers import FakeClock


@pytest.fixture(autouse=True)
def _tables():
    SQLModel.metadata.create_all(engine)
    yield
    SQLModel.metadata.drop_all(engine)
    app.dependency_overrides.clear()


@pytest.fixture
def db_session():
    with Session(engine) as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def client():
    # No `with`: lifespan (create_all against DATABASE_URL) is not needed
    return TestClient(app)


@pytest.fixture
def api_clock(clock, monkeypatch):
    """Freeze the clock used by the storefront endpoints."""
    from app.routers import checkout_sessions

    monkeypatch.setattr(checkout_sessions.service, "clock", clock)
    return clock


@pytest.fixture
def fetch_row():
    def _fetch(session_id: str, tenant_id: str = "t1") -> CheckoutSession | None:
        with Session(engine) as session:
            return session.get(CheckoutSession, (session_id, tenant_id))

    return _fetch


@pytest.fixture
def count_rows():
    def _count() -> int:
        from sqlmodel import select

        with Session(engine) as session:
            return len(session.exec(select(CheckoutSession)).all())

    return _count
