"""Shared pytest fixtures for test suite"""
import hashlib
import hmac
import json
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict, Generator, Optional
from unittest.mock import patch

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

TEST_WEBHOOK_SECRET = "whsec_test_secret"
TEST_ADMIN_TOKEN = "test-admin-token"

# Settings are read once at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", TEST_WEBHOOK_SECRET)
os.environ.setdefault("PAYMENT_PROVIDER", "stripe")

from payhook.main import app
from payhook.core.config import settings
from payhook.db.session import get_db
from payhook.models import Base
from payhook.db import redis as redis_module


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

DEFAULT_METADATA = {
    "kind": "session",
    "target_id": "sess_1",
    "buyer_id": "user_1",
    "creator_id": "creator_1",
    "currency": "usd",
    "price_cents": "1000",
}


def sign_payload(payload: bytes, secret: str = TEST_WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a stripe-signature header the way Stripe signs deliveries"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def checkout_event(
    event_id: str = "evt_test_1",
    payment_intent: Optional[str] = "pi_test_1",
    metadata: Optional[Dict[str, Any]] = None,
    event_type: str = "checkout.session.completed",
    mode: str = "payment",
    payment_status: str = "paid",
) -> Dict[str, Any]:
    """A checkout.session event body as Stripe delivers it"""
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": "cs_test_1",
                "object": "checkout.session",
                "mode": mode,
                "payment_status": payment_status,
                "payment_intent": payment_intent,
                "metadata": dict(DEFAULT_METADATA) if metadata is None else metadata,
            }
        },
    }


def fee_intent(fee: int = 58) -> Dict[str, Any]:
    """PaymentIntent with latest_charge.balance_transaction expanded"""
    return {
        "id": "pi_test_1",
        "object": "payment_intent",
        "latest_charge": {"id": "ch_test_1", "balance_transaction": {"id": "txn_test_1", "fee": fee}},
    }


def post_webhook(client: TestClient, event: Dict[str, Any], signature: Optional[str] = None):
    """POST a signed event to the Stripe webhook endpoint"""
    payload = json.dumps(event).encode("utf-8")
    headers = {"content-type": "application/json"}
    headers["stripe-signature"] = signature if signature is not None else sign_payload(payload)
    return client.post("/api/webhooks/stripe", content=payload, headers=headers)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    # Create all tables
    Base.metadata.create_all(bind=test_engine)

    # Create session
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Mock Redis client using fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, '_client', fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def mock_stripe_fee():
    """Stub the Stripe fee lookup (PaymentIntent with expanded balance transaction)"""
    with patch('payhook.services.providers.stripe_provider.stripe.PaymentIntent.retrieve') as mock_retrieve:
        mock_retrieve.return_value = fee_intent(58)
        yield mock_retrieve


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and mocked Redis"""

    # Override get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db

    try:
        # Disable OpenTelemetry and startup DDL in tests
        with patch('payhook.main.initialize_otel', return_value=False):
            with patch('payhook.main.instrument_sqlalchemy'):
                with patch('payhook.main.init_db'):
                    with TestClient(app) as test_client:
                        yield test_client
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def admin_headers(monkeypatch) -> Dict[str, str]:
    """Enable the admin API and return matching auth headers"""
    monkeypatch.setattr(settings, "ADMIN_API_TOKEN", TEST_ADMIN_TOKEN)
    return {"Authorization": f"Bearer {TEST_ADMIN_TOKEN}"}


@pytest.fixture(scope="function")
def mock_email_service():
    """Mock email service (Resend) to avoid sending actual emails"""
    with patch('payhook.services.receipt_service.resend') as mock_resend:
        mock_resend.Emails.send.return_value = {"id": "email_test123"}
        yield mock_resend
