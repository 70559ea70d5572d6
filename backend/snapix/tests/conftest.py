"""Pytest configuration for snapix tests

WHAT: Provides shared fixtures for service, router and worker tests
WHY: Ensures consistent test setup, database isolation, and auth configuration
REFERENCES:
    - snapix/main.py: FastAPI application
    - snapix/database.py: Database configuration
    - snapix/deps.py: Dependency injection
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient
from jose import jwt

# Ensure backend is in path
BACKEND_ROOT = Path(__file__).resolve().parents[2]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Set test environment
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
# Must be a URL-safe base64-encoded 32-byte Fernet key
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA=")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379")


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """Create in-memory test database engine."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from snapix.database import Base
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def test_db_session(test_db_engine) -> Generator[Session, None, None]:
    """Create test database session with rollback."""
    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_db_engine
    )

    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


# ============================================================================
# Model Fixtures
# ============================================================================

@pytest.fixture
def test_user(test_db_session):
    """Create test user."""
    from snapix.models import User

    user = User(email="test@example.com", name="Test User")

    test_db_session.add(user)
    test_db_session.commit()
    test_db_session.refresh(user)

    return user


@pytest.fixture
def connected_account(test_db_session, test_user):
    """Connected ad account for test_user with an encrypted token."""
    from snapix.models import AdAccount, AdAccountStatusEnum
    from snapix.security import encrypt_secret

    account = AdAccount(
        account_id="123456789",
        account_name="Test Ad Account",
        access_token_enc=encrypt_secret("user-access-token", context="test"),
        currency="USD",
        status=AdAccountStatusEnum.connected,
        created_by=test_user.email,
    )

    test_db_session.add(account)
    test_db_session.commit()
    test_db_session.refresh(account)

    return account


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(test_db_session):
    """Create FastAPI test application."""
    from snapix.main import create_app
    from snapix.database import get_db

    test_app = create_app()

    def override_get_db():
        yield test_db_session

    test_app.dependency_overrides[get_db] = override_get_db

    return test_app


@pytest.fixture
def client(app) -> TestClient:
    """Create TestClient for HTTP testing."""
    return TestClient(app)


# ============================================================================
# Authentication Fixtures
# ============================================================================

@pytest.fixture
def test_user_token(test_user):
    """Generate test JWT for test_user, signed the way the login service signs it."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=60)
    return jwt.encode(
        {"sub": test_user.email, "exp": int(expire.timestamp())},
        os.environ["JWT_SECRET"],
        algorithm="HS256",
    )


@pytest.fixture
def auth_headers(test_user_token):
    """Cookie header carrying the session JWT."""
    return {"Cookie": f"access_token={test_user_token}"}


# ============================================================================
# Helper Fixtures
# ============================================================================

class FrozenClock:
    """Callable clock for TTL tests; advance() moves time forward."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    from snapix.models import utcnow

    return FrozenClock(utcnow())
