"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It points the app at an in-memory SQLite store and a known token secret
before any module reads settings.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

# Set default env vars that all tests might need
os.environ.setdefault("AUTH_JWT_SECRET", "test-secret-0123456789-abcdefghij")
os.environ.setdefault("AUTH_ADMIN_USER_IDS", "admin-1")
os.environ.setdefault("DB_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from buyer_leads.adapters.db.session import drop_db, get_session_factory, init_db
from buyer_leads.core.app_factory import create_app
from buyer_leads.core.auth import CurrentUser
from buyer_leads.core.rate_limit import reset_rate_limiter

TEST_SECRET = os.environ["AUTH_JWT_SECRET"]


@pytest.fixture(autouse=True)
def fresh_state() -> Iterator[None]:
    """Empty tables and rate-limit buckets for every test."""
    drop_db()
    init_db()
    reset_rate_limiter()
    yield
    reset_rate_limiter()


@pytest.fixture
def session() -> Iterator[Session]:
    s = get_session_factory()()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def owner() -> CurrentUser:
    return CurrentUser(id="user-1")


@pytest.fixture
def other_user() -> CurrentUser:
    return CurrentUser(id="user-2")


@pytest.fixture
def admin() -> CurrentUser:
    return CurrentUser(id="admin-1", is_admin=True)


def make_token(sub: str = "user-1", *, expires_in: int = 3600, **claims: Any) -> str:
    payload = {
        "sub": sub,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        **claims,
    }
    return jwt.encode(payload, TEST_SECRET, algorithm="HS256")


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    """Build an Authorization header for a user id."""

    def _headers(sub: str = "user-1", **claims: Any) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(sub, **claims)}"}

    return _headers


@pytest.fixture
def client() -> Iterator[TestClient]:
    with TestClient(create_app()) as c:
        yield c


def buyer_payload(**overrides: Any) -> dict[str, Any]:
    """A valid create payload; override any field per test."""
    payload: dict[str, Any] = {
        "full_name": "Asha Verma",
        "email": "asha@example.com",
        "phone": "9876543210",
        "city": "Chandigarh",
        "property_type": "Apartment",
        "bhk": "2",
        "purpose": "Buy",
        "budget_min": 5_000_000,
        "budget_max": 7_500_000,
        "timeline": "0-3m",
        "source": "Website",
        "notes": "Prefers east facing",
        "tags": ["hot", "family"],
    }
    payload.update(overrides)
    return payload
