# SPDX-License-Identifier: MIT
"""Pytest configuration and fixtures for CRM duplicate engine tests."""

import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Generator

import pytest

# Set test environment variables before importing app
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture(autouse=True)
def clear_config_cache():
    """Matching settings are cached per tenant; start every test cold."""
    from crm.cache import invalidate_prefix

    invalidate_prefix()
    yield
    invalidate_prefix()


@pytest.fixture
def db_session() -> Generator:
    """Session on a fresh in-memory schema."""
    from crm.database import SessionLocal, create_all_tables, drop_all_tables

    create_all_tables()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        drop_all_tables()


@pytest.fixture
def test_client(db_session) -> Generator:
    """Create a test client for the FastAPI application."""
    from fastapi.testclient import TestClient
    from api.main import app

    with TestClient(app) as client:
        yield client


@pytest.fixture
def tenant_id() -> uuid.UUID:
    return uuid.UUID("11111111-1111-1111-1111-111111111111")


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.UUID("22222222-2222-2222-2222-222222222222")


@pytest.fixture
def ctx(tenant_id, user_id):
    """Request context for the default test tenant."""
    from crm.deduplication import RequestContext

    return RequestContext(tenant_id=tenant_id, user_id=user_id)


@pytest.fixture
def other_ctx(user_id):
    """Request context for a second, unrelated tenant."""
    from crm.deduplication import RequestContext

    return RequestContext(tenant_id=uuid.UUID("33333333-3333-3333-3333-333333333333"), user_id=user_id)


@pytest.fixture
def auth_headers(tenant_id, user_id) -> dict:
    return {"X-Tenant-Id": str(tenant_id), "X-User-Id": str(user_id)}


@pytest.fixture
def base_time() -> datetime:
    return datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_contact(db_session, tenant_id, base_time) -> Callable:
    """Factory: insert and commit a contact."""
    from crm.database import Contact

    counter = {"n": 0}

    def _make(first_name: str = "", last_name: str = "", email: str | None = None, **fields):
        counter["n"] += 1
        stamp = base_time + timedelta(minutes=counter["n"])
        fields.setdefault("tenant_id", tenant_id)
        fields.setdefault("created_at", stamp)
        fields.setdefault("updated_at", stamp)
        contact = Contact(first_name=first_name, last_name=last_name, email=email, **fields)
        db_session.add(contact)
        db_session.commit()
        return contact

    return _make


@pytest.fixture
def make_company(db_session, tenant_id, base_time) -> Callable:
    """Factory: insert and commit a company."""
    from crm.database import Company

    counter = {"n": 0}

    def _make(name: str, website: str | None = None, **fields):
        counter["n"] += 1
        stamp = base_time + timedelta(minutes=counter["n"])
        fields.setdefault("tenant_id", tenant_id)
        fields.setdefault("created_at", stamp)
        fields.setdefault("updated_at", stamp)
        company = Company(name=name, website=website, **fields)
        db_session.add(company)
        db_session.commit()
        return company

    return _make


@pytest.fixture
def add_rows(db_session) -> Callable:
    """Insert arbitrary dependent rows and commit."""

    def _add(*rows):
        db_session.add_all(rows)
        db_session.commit()
        return rows

    return _add
