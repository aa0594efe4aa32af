"""Shared pytest fixtures for test suite"""
import pytest
import sys
import time
from pathlib import Path
from typing import Generator
from unittest.mock import patch
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
import fakeredis

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from app.main import app
from app.db.session import get_db
from app.db import redis as redis_module
from app.models import Base
from app.models.user import User


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

DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function", autouse=True)
def mock_redis():
    """Replace the lazily created Redis client with fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and mocked Redis"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db

    try:
        with patch("app.main.init_db"):
            with patch("app.main.instrument_sqlalchemy"):
                with TestClient(app) as test_client:
                    yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def test_user(db_session: Session) -> User:
    user = User(email="member@example.com")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def other_user(db_session: Session) -> User:
    user = User(email="other@example.com", revenuecat_user_id="$RCAnonymousID:abc123")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def make_event():
    """Factory for the `event` object of a webhook envelope"""

    def _make_event(
        event_type: str = "INITIAL_PURCHASE",
        app_user_id: str = "unknown-user",
        product_id: str = "premium_yearly",
        original_transaction_id: str = "T1",
        transaction_id: str = None,
        expiration_at_ms: int = None,
        **overrides
    ) -> dict:
        purchased = now_ms()
        event = {
            "type": event_type,
            "app_user_id": app_user_id,
            "product_id": product_id,
            "entitlement_ids": [],
            "purchased_at_ms": purchased,
            "expiration_at_ms": expiration_at_ms if expiration_at_ms is not None else purchased + 365 * DAY_MS,
            "store": "APP_STORE",
            "environment": "SANDBOX",
            "price": 99.99,
            "currency": "USD",
            "transaction_id": transaction_id or f"{original_transaction_id}-{event_type.lower()}",
            "original_transaction_id": original_transaction_id,
        }
        event.update(overrides)
        return event

    return _make_event
