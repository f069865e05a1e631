"""
Shared pytest fixtures for all test modules.

Uses an in-memory SQLite database (StaticPool) so every test
function gets a clean, isolated database with no disk I/O.
The aggregator is replaced by FakeGateway for handler tests.
"""
import json
import pytest
from datetime import datetime
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from typing import Optional

from app.config import Settings, get_settings
from app.database import Base, get_db
from app.processors.base import BaseGateway, StatusResult, SubmitResult, Token
from app.processors.pesapal import get_gateway
from app.services.transactions import utcnow
from app.services.webhook import compute_signature
from app import models


WEBHOOK_SECRET = "whsec_test_123"

# ---------------------------------------------------------------------------
# In-memory database engine shared across all fixtures in a test session.
# StaticPool forces all SQLAlchemy connections to reuse the same underlying
# sqlite3 connection, which is required for in-memory SQLite.
# ---------------------------------------------------------------------------
TEST_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=TEST_ENGINE)


class FakeGateway(BaseGateway):
    """In-process stand-in for the aggregator."""

    def __init__(self):
        self.auth_error: Optional[Exception] = None
        self.submit_error: Optional[Exception] = None
        self.status_result: Optional[StatusResult] = None
        self.status_error: Optional[Exception] = None
        self.submitted = []
        self.status_queries = []
        self._counter = 0

    @property
    def gateway_name(self) -> str:
        return "fake"

    async def authenticate(self, consumer_key, consumer_secret):
        if self.auth_error:
            raise self.auth_error
        return Token(value="tok_test")

    async def submit_order(self, token, order_payload):
        if self.submit_error:
            raise self.submit_error
        self._counter += 1
        self.submitted.append(order_payload)
        tracking_id = f"trk_{self._counter:04d}"
        return SubmitResult(
            tracking_id=tracking_id,
            redirect_url=f"https://gateway.test/checkout/{tracking_id}",
        )

    async def query_status(self, token, tracking_id):
        self.status_queries.append(tracking_id)
        if self.status_error:
            raise self.status_error
        return self.status_result


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        webhook_secret=WEBHOOK_SECRET,
        gateway_consumer_key="ck_test",
        gateway_consumer_secret="cs_test",
        gateway_base_url="https://gateway.test",
        gateway_notification_id="ipn_test",
    )


@pytest.fixture(autouse=True)
def reset_db():
    """Drop and recreate all tables before each test for full isolation."""
    Base.metadata.drop_all(bind=TEST_ENGINE)
    Base.metadata.create_all(bind=TEST_ENGINE)
    yield
    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db(reset_db):
    """Yield a SQLAlchemy session backed by the in-memory test database."""
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway, settings):
    """
    FastAPI TestClient with the DB, settings and gateway dependencies
    overridden. The TestClient is NOT used as a context manager so the
    lifespan hook (which creates tables on the on-disk DB) is skipped.
    """
    from app.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers, not fixtures, so any test file can import and call them directly.
# ---------------------------------------------------------------------------
def make_txn(
    db,
    order_reference: str,
    amount: float = 100.0,
    currency: str = "KES",
    status: str = models.PENDING,
    tracking_id: Optional[str] = None,
    channel: str = "mpesa",
    updated_at: Optional[datetime] = None,
) -> models.Transaction:
    now = utcnow()
    txn = models.Transaction(
        order_reference=order_reference,
        amount=amount,
        currency=currency,
        channel=channel,
        status=status,
        gateway_tracking_id=tracking_id,
        created_at=now,
        updated_at=updated_at or now,
    )
    db.add(txn)
    db.commit()
    db.refresh(txn)
    return txn


def signed(payload: dict, secret: str = WEBHOOK_SECRET):
    """Return (raw_body, headers) for a webhook delivery signed with secret."""
    body = json.dumps(payload).encode("utf-8")
    return body, {"X-Signature": compute_signature(body, secret), "Content-Type": "application/json"}
