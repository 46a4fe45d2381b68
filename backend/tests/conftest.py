"""
Test configuration and fixtures for task tracker tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client with the store dependency overridden
- An InMemoryStore with one user per global role for service tests
- Authentication helpers (JWT token generation)
"""

import os
import sys
import logging
from datetime import timedelta
from types import SimpleNamespace
from typing import Generator, Dict

import pytest

# Settings are read at import time, so they must be in place before importing the app
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app
from entities import User
from repositories import InMemoryStore, SqlAlchemyStore, TaskStore, get_store
from auth.security import hash_password, create_access_token

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

TEST_PASSWORD = "password123"


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    logger.debug("Creating test database")

    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        logger.debug("Test database cleaned up")


@pytest.fixture(scope="function")
def sql_store(test_db: Session) -> SqlAlchemyStore:
    return SqlAlchemyStore(test_db)


@pytest.fixture(scope="function")
def client(sql_store: SqlAlchemyStore) -> TestClient:
    """
    Create FastAPI test client backed by the SQLite store.
    """
    def override_get_store():
        yield sql_store

    app.dependency_overrides[get_store] = override_get_store

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def create_user(
    store: TaskStore,
    name: str,
    email: str,
    role: str = "staff",
    hierarchy: int = 1,
    division: str = "Engineering",
    with_password: bool = False,
) -> User:
    """Insert a user through the store port."""
    with store.transaction():
        user = store.upsert_user(User(
            id=None,
            name=name,
            email=email,
            role=role,
            hierarchy=hierarchy,
            division=division,
            password_hash=hash_password(TEST_PASSWORD) if with_password else None,
        ))
    logger.debug(f"Created {role} user {email} with ID: {user.id}")
    return user


def _people(store: TaskStore, with_password: bool = False) -> SimpleNamespace:
    return SimpleNamespace(
        admin=create_user(store, "Admin User", "admin@test.com", "admin", 10, with_password=with_password),
        manager=create_user(store, "Manager User", "manager@test.com", "manager", 3, with_password=with_password),
        staff=create_user(store, "Staff User", "staff@test.com", "staff", 1, with_password=with_password),
        another=create_user(store, "Another Staff", "another@test.com", "staff", 1, with_password=with_password),
        hr=create_user(store, "HR User", "hr@test.com", "hr", 2, "People", with_password=with_password),
        outsider=create_user(store, "Sales Manager", "sales@test.com", "manager", 3, "Sales", with_password=with_password),
    )


@pytest.fixture(scope="function")
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture(scope="function")
def people(memory_store: InMemoryStore) -> SimpleNamespace:
    """
    One user per global role in the in-memory store.

    manager (hierarchy 3) and staff/another (hierarchy 1) share the Engineering
    division; outsider is a manager in Sales.
    """
    return _people(memory_store)


@pytest.fixture(scope="function")
def sql_people(sql_store: SqlAlchemyStore) -> SimpleNamespace:
    """Same users as `people`, stored in SQLite with a known password."""
    return _people(sql_store, with_password=True)


def create_auth_token(user: User, expires_delta: timedelta = None) -> str:
    """
    Helper to create JWT access token for a user.

    Args:
        user: User to create token for
        expires_delta: Optional expiration time override

    Returns:
        JWT access token string
    """
    logger.debug(f"Creating auth token for user {user.id}")
    token_data = {
        "sub": str(user.id),
        "role": user.role,
        "email": user.email
    }
    return create_access_token(token_data, expires_delta)


def auth_headers_for(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_auth_token(user)}"}
