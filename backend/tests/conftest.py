"""Shared pytest fixtures for test suite"""
import hashlib
import hmac
import json
import os
import sys
import uuid
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock

import pytest

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("RAZORPAY_ENCRYPTION_KEY", "0123456789abcdef0123456789abcdef")
os.environ.setdefault("ENVIRONMENT", "development")

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from autopay.main import app
from autopay.db.session import get_db
from autopay.models import Base, Subscription, SubscriptionStatus
from autopay.schemas.configs import CreateConfigRequest
from autopay.services import config_service
from autopay.services.gateway_client import GatewayClientCache, RazorpayGateway, get_gateway_cache
from autopay.utils.encryption import get_codec


KEY_ID = "rzp_test_key_id"
KEY_SECRET = "rzp_test_key_secret"
WEBHOOK_SECRET = "rzp_test_webhook_secret"
PLAN_ID = "plan_TEST123"
GATEWAY_SUBSCRIPTION_ID = "sub_TEST123"


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


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Signature Razorpay would send for body"""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def webhook_body(event: str, subscription_id: str = GATEWAY_SUBSCRIPTION_ID, **entity) -> bytes:
    """Serialized Razorpay subscription webhook"""
    payload = {
        "entity": "event",
        "event": event,
        "payload": {
            "subscription": {
                "entity": {"id": subscription_id, "entity": "subscription", **entity}
            }
        },
        "created_at": 1700000000,
    }
    return json.dumps(payload).encode()


@pytest.fixture(autouse=True)
def reset_codec():
    """Each test sees a codec built from the current settings"""
    get_codec.cache_clear()
    yield
    get_codec.cache_clear()


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


@pytest.fixture
def plan():
    return {
        "id": PLAN_ID,
        "entity": "plan",
        "interval": 1,
        "period": "monthly",
        "item": {"name": "Pro", "amount": 49900, "currency": "INR"},
    }


@pytest.fixture
def fake_gateway(plan):
    """Stand-in for RazorpayGateway with canned responses"""
    gateway = MagicMock(spec=RazorpayGateway)
    gateway.create_subscription.return_value = {
        "id": GATEWAY_SUBSCRIPTION_ID,
        "entity": "subscription",
        "plan_id": PLAN_ID,
        "status": "created",
        "short_url": "https://rzp.io/i/test123",
        "customer_id": None,
    }
    gateway.fetch_plan.side_effect = lambda plan_id: {**plan, "id": plan_id}
    gateway.fetch_subscription.return_value = {
        "id": GATEWAY_SUBSCRIPTION_ID,
        "status": "authenticated",
        "customer_id": "cust_TEST123",
    }
    gateway.cancel_subscription.return_value = {
        "id": GATEWAY_SUBSCRIPTION_ID,
        "status": "cancelled",
    }
    return gateway


@pytest.fixture
def gateway_cache(fake_gateway) -> GatewayClientCache:
    return GatewayClientCache(factory=lambda credentials: fake_gateway)


@pytest.fixture
def make_config(db_session: Session):
    """Factory storing a Razorpay config and returning its decrypted credentials"""
    def _make(app_name="matchbox", environment="test", is_active=True, **overrides):
        request = CreateConfigRequest(
            app_name=app_name,
            environment=environment,
            razorpay_key_id=overrides.get("key_id", KEY_ID),
            razorpay_key_secret=overrides.get("key_secret", KEY_SECRET),
            razorpay_webhook_secret=overrides.get("webhook_secret", WEBHOOK_SECRET),
            is_active=is_active,
            metadata=overrides.get("metadata"),
        )
        return config_service.create_config(request, db_session)
    return _make


@pytest.fixture
def test_config(make_config):
    return make_config()


@pytest.fixture
def make_subscription(db_session: Session, test_config):
    """Factory inserting a local subscription row linked to test_config"""
    def _make(
        razorpay_subscription_id=GATEWAY_SUBSCRIPTION_ID,
        status=SubscriptionStatus.CREATED,
        phone="9876543210",
        app_name="matchbox",
        metadata=None,
        config=None,
    ):
        subscription = Subscription(
            razorpay_config_id=(config or test_config).id,
            user_id=uuid.uuid4(),
            app_name=app_name,
            phone=phone,
            email="user@matchbox.app",
            razorpay_subscription_id=razorpay_subscription_id,
            razorpay_plan_id=PLAN_ID,
            status=status,
            amount=49900,
            currency="INR",
            frequency="monthly",
            total_count=120,
            short_url="https://rzp.io/i/test123",
            metadata_=metadata or {},
        )
        db_session.add(subscription)
        db_session.commit()
        db_session.refresh(subscription)
        return subscription
    return _make


@pytest.fixture(scope="function")
def client(db_session: Session, gateway_cache: GatewayClientCache) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and fake Razorpay gateway"""

    # Override get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway_cache] = lambda: gateway_cache

    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
