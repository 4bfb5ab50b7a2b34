"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
# Inject sys.path for reliable pytest imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # => .../apps/api

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from netpass_api.billing.paystack import PaystackClient
from netpass_api.billing.reconciler import WebhookReconciler
from netpass_api.billing.store import RecordStore
from netpass_api.db.engine import build_sessionmaker
from netpass_api.db.models import Base
from netpass_api.db.session import get_db
from netpass_api.main import app
from netpass_api.routers.deps import get_gateway

TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Tests start without webhook/internal secrets unless they set them."""
    monkeypatch.delenv("PAYSTACK_WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("NETPASS_INTERNAL_KEY", raising=False)


@pytest.fixture(scope="function")
def db_engine():
    """In-memory SQLite engine shared across threads (TestClient runs sync routes in a pool)."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Session:
    """Create a fresh database session for each test."""
    session = build_sessionmaker(db_engine)()
    try:
        yield session
        session.rollback()
    finally:
        session.close()


@pytest.fixture
def store(db_session: Session) -> RecordStore:
    return RecordStore(db_session)


@pytest.fixture
def reconciler(store: RecordStore) -> WebhookReconciler:
    return WebhookReconciler(store)


@pytest.fixture
def mock_gateway() -> AsyncMock:
    """Paystack client double; every API method is an AsyncMock."""
    return AsyncMock(spec=PaystackClient)


@pytest.fixture
def test_client(db_session: Session, db_engine, mock_gateway: AsyncMock):
    """TestClient with db_session + gateway dependency overrides."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close - db_session fixture will handle it

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: mock_gateway
    with patch("netpass_api.routers.health.get_engine", return_value=db_engine):
        client = TestClient(app)
        yield client
    app.dependency_overrides.clear()


# ============================================================================
# Paystack payload builders
# ============================================================================


def charge_data(
    reference: str = "T100",
    email: str = "ada@hotspot.ng",
    amount=500,
    paid_at: str = "2024-01-01T00:00:00.000Z",
    status: str = "success",
    **extra,
) -> dict:
    """Minimal Paystack transaction object (webhook ``data`` / verify result)."""
    data = {
        "id": 4099260516,
        "status": status,
        "reference": reference,
        "amount": amount,
        "currency": "NGN",
        "paid_at": paid_at,
        "gateway_response": "Successful",
        "customer": {"id": 181873746, "email": email},
    }
    data.update(extra)
    return data


@pytest.fixture
def make_charge():
    """Factory fixture for Paystack transaction payloads."""
    return charge_data
