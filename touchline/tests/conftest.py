"""Pytest configuration for touchline integration tests

WHAT: Provides shared fixtures for HTTP endpoint and service-level tests
WHY: Ensures consistent test setup, database isolation, and a stubbed arq queue
REFERENCES:
    - touchline/main.py: FastAPI application
    - touchline/database.py: Database configuration
    - touchline/deps.py: API key authentication dependency
    - touchline/workers/arq_enqueue.py: Enqueue helpers (stubbed here)
"""

import os
from datetime import datetime, timedelta
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment before touchline.database builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379")


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """Create in-memory test database engine.

    pysqlite's own transaction handling breaks SAVEPOINT, which the visitor and
    session find-or-create rely on; BEGIN is emitted explicitly instead.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    from touchline.database import Base
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
        bind=test_db_engine,
    )

    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(test_db_session):
    """Create FastAPI test application."""
    from touchline.main import create_app
    from touchline.database import get_db

    test_app = create_app()

    # The fixture owns the session; requests must not close it
    def override_get_db():
        yield test_db_session

    test_app.dependency_overrides[get_db] = override_get_db

    return test_app


@pytest.fixture
def client(app) -> TestClient:
    """Create TestClient for HTTP testing."""
    return TestClient(app)


# ============================================================================
# Tenancy & Authentication Fixtures
# ============================================================================

def _create_account(db, name):
    from touchline.models import Account

    account = Account(name=name, status="active", created_at=datetime.utcnow())
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


@pytest.fixture
def test_account(test_db_session):
    """Create test account."""
    return _create_account(test_db_session, "Acme Store")


@pytest.fixture
def test_account_b(test_db_session):
    """Create second test account (for isolation tests)."""
    return _create_account(test_db_session, "Other Store")


@pytest.fixture
def live_api_key(test_db_session, test_account):
    """(ApiKey, plaintext) for a live key of test_account."""
    from touchline.models import ApiKeyEnvironmentEnum
    from touchline.services.api_key_service import generate_api_key

    return generate_api_key(test_db_session, test_account, ApiKeyEnvironmentEnum.live)


@pytest.fixture
def test_mode_api_key(test_db_session, test_account):
    """(ApiKey, plaintext) for a test-mode key of test_account."""
    from touchline.models import ApiKeyEnvironmentEnum
    from touchline.services.api_key_service import generate_api_key

    return generate_api_key(test_db_session, test_account, ApiKeyEnvironmentEnum.test)


@pytest.fixture
def auth_headers(live_api_key):
    """Standard auth headers for requests (live key)."""
    _, plaintext = live_api_key
    return {
        "Authorization": f"Bearer {plaintext}",
        "Content-Type": "application/json",
    }


@pytest.fixture
def test_mode_headers(test_mode_api_key):
    """Auth headers for a test-mode key."""
    _, plaintext = test_mode_api_key
    return {
        "Authorization": f"Bearer {plaintext}",
        "Content-Type": "application/json",
    }


# ============================================================================
# Queue Fixtures
# ============================================================================

@pytest.fixture
def enqueued(monkeypatch):
    """Replace the arq enqueue helpers with recorders.

    Returns a dict of lists: {"events": [...], "attribution": [...]}.
    """
    from touchline.workers import arq_enqueue

    calls = {"events": [], "attribution": []}

    async def fake_enqueue_event_processing(account_id, event_data, is_test=False, request_metadata=None):
        calls["events"].append({
            "account_id": account_id,
            "event_data": dict(event_data),
            "is_test": is_test,
            "request_metadata": request_metadata,
        })
        return {"job_id": f"job-{len(calls['events'])}", "status": "enqueued"}

    async def fake_enqueue_attribution_calculation(conversion_id):
        calls["attribution"].append(str(conversion_id))
        return {"job_id": f"attribution:{conversion_id}", "status": "enqueued"}

    monkeypatch.setattr(arq_enqueue, "enqueue_event_processing", fake_enqueue_event_processing)
    monkeypatch.setattr(arq_enqueue, "enqueue_attribution_calculation", fake_enqueue_attribution_calculation)
    return calls


# ============================================================================
# Model Fixtures
# ============================================================================

@pytest.fixture
def make_visitor(test_db_session, test_account):
    """Factory: persist a visitor for test_account (or another account)."""
    from touchline.models import Visitor

    def _make(visitor_id="visitor_abc", account=None, is_test=False):
        now = datetime.utcnow()
        visitor = Visitor(
            account_id=(account or test_account).id,
            visitor_id=visitor_id,
            first_seen_at=now,
            last_seen_at=now,
            traits={},
            is_test=is_test,
        )
        test_db_session.add(visitor)
        test_db_session.commit()
        test_db_session.refresh(visitor)
        return visitor

    return _make


@pytest.fixture
def make_session(test_db_session):
    """Factory: persist a classified session for a visitor."""
    from touchline.models import VisitorSession

    def _make(visitor, started_at, channel="direct", utm=None, session_id=None, is_test=False):
        session = VisitorSession(
            account_id=visitor.account_id,
            visitor_id=visitor.id,
            session_id=session_id or f"sess_{started_at.strftime('%Y%m%d%H%M%S')}_{channel}",
            started_at=started_at,
            page_view_count=1,
            initial_utm=utm or {},
            channel=channel,
            is_test=is_test,
        )
        test_db_session.add(session)
        test_db_session.commit()
        test_db_session.refresh(session)
        return session

    return _make


@pytest.fixture
def make_conversion(test_db_session):
    """Factory: persist a conversion for a visitor."""
    from decimal import Decimal
    from touchline.models import Conversion

    def _make(visitor, converted_at, revenue=None, is_test=False, conversion_type="purchase"):
        conversion = Conversion(
            account_id=visitor.account_id,
            visitor_id=visitor.id,
            conversion_type=conversion_type,
            revenue=Decimal(str(revenue)) if revenue is not None else None,
            properties={},
            converted_at=converted_at,
            is_test=is_test,
        )
        test_db_session.add(conversion)
        test_db_session.commit()
        test_db_session.refresh(conversion)
        return conversion

    return _make


@pytest.fixture
def make_model(test_db_session, test_account):
    """Factory: persist an active attribution model for test_account."""
    from touchline.models import AttributionModel

    def _make(algorithm, lookback_days=30, name=None, is_default=False, is_active=True):
        model = AttributionModel(
            account_id=test_account.id,
            name=name or algorithm.value,
            algorithm=algorithm,
            lookback_days=lookback_days,
            is_active=is_active,
            is_default=is_default,
        )
        test_db_session.add(model)
        test_db_session.commit()
        test_db_session.refresh(model)
        return model

    return _make


@pytest.fixture
def conversion_time():
    """Fixed conversion reference time used by journey tests."""
    return datetime(2025, 12, 1, 12, 0, 0)


@pytest.fixture
def days_before(conversion_time):
    """Helper: conversion_time minus N days."""
    return lambda days: conversion_time - timedelta(days=days)
