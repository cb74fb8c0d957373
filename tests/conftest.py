"""Pytest configuration and shared fixtures.

Every test gets its own in-memory SQLite database. The engine commits
its own transactions, so isolation comes from a fresh database per test
rather than an outer rolled-back transaction.
"""

import os

# gatekeeper.db.session builds its engine at import time
os.environ.setdefault("GATEKEEPER_DATABASE_URL", "sqlite://")
# Tests that exercise rate limiting install their own limiter on app.state
os.environ.setdefault("GATEKEEPER_RATE_LIMIT_ENABLED", "false")

from typing import Dict

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gatekeeper.core.config import Settings
from gatekeeper.core.rbac import PermissionAccessGate, MODERATOR_PERMISSIONS
from gatekeeper.core.approval.engine import TransitionEngine
from gatekeeper.db.base import Base
from gatekeeper.db import models  # noqa: F401  (registers tables)
from gatekeeper.services.counters import StatusAggregator
from gatekeeper.services.notifications import NotificationDispatcher

from tests.factories import ADMIN_ID, VIEWER_ID, FakePushChannel, auth_headers


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(require_rejection_reason=True, push_webhook_url=None, push_timeout_seconds=0.2)


@pytest.fixture
def push_channel() -> FakePushChannel:
    return FakePushChannel()


@pytest.fixture
def gate() -> PermissionAccessGate:
    """Admin may decide; viewer may only look."""
    return PermissionAccessGate({
        ADMIN_ID: MODERATOR_PERMISSIONS,
        VIEWER_ID: ["subjects:read", "subjects:list"],
    })


@pytest.fixture
def dispatcher(db_session, push_channel, settings) -> NotificationDispatcher:
    return NotificationDispatcher(db_session, channel=push_channel, settings=settings)


@pytest.fixture
def aggregator(db_session) -> StatusAggregator:
    return StatusAggregator(db_session)


@pytest.fixture
def transition_engine(db_session, gate, dispatcher, aggregator, settings) -> TransitionEngine:
    return TransitionEngine(
        db_session, gate, dispatcher=dispatcher, aggregator=aggregator, settings=settings
    )


# ---------------------------------------------------------------------------
# HTTP API
# ---------------------------------------------------------------------------


@pytest.fixture
def app(db_session, session_factory):
    from gatekeeper.api.main import app
    from gatekeeper.api.deps import get_db, get_session_factory

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return auth_headers(ADMIN_ID, MODERATOR_PERMISSIONS + ["dashboard:reconcile"])
