"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.deps import get_current_user_id
from api.plaid import _get_background_sync_service, _get_plaid_client
from api.sync import get_sync_service
from config import settings
from database import Base, get_db
from main import app
from services.background_sync import BackgroundSyncService
from services.sync_lock import SyncLockManager
from services.sync_service import SyncService
from services.token_vault import get_token_vault
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    TEST_ENCRYPTION_KEY,
    TEST_USER_ID,
    existing_transaction,
    financial_account,
    manual_account,
    plaid_item,
    webhook_signing_key,
)
from tests.fixtures.mocks import FakeClock, InlineExecutor, MockPlaidClient, no_sleep


@pytest.fixture(autouse=True)
def encryption_key(monkeypatch):
    """Give every test a known vault key and a fresh cached vault."""
    monkeypatch.setattr(settings, "PLAID_ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
    get_token_vault.cache_clear()
    yield TEST_ENCRYPTION_KEY
    get_token_vault.cache_clear()


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite engine shared by all sessions in a test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine):
    """Sessionmaker for code that opens its own sessions (background sync)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(name="db")
def db_fixture(session_factory):
    """Create an in-memory SQLite database for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(name="clock")
def clock_fixture():
    return FakeClock()


@pytest.fixture(name="mock_plaid_client")
def mock_plaid_client_fixture():
    """A Plaid client with two sample accounts and an empty feed."""
    return MockPlaidClient()


@pytest.fixture(name="sync_service")
def sync_service_fixture(mock_plaid_client):
    return SyncService(
        plaid_client=mock_plaid_client,
        lock_manager=SyncLockManager(),
        sleep=no_sleep,
    )


@pytest.fixture(name="background_service")
def background_service_fixture(session_factory, mock_plaid_client, clock):
    return BackgroundSyncService(
        session_factory=session_factory,
        plaid_client=mock_plaid_client,
        executor=InlineExecutor(),
        now=clock,
        sleep=no_sleep,
    )


@pytest.fixture(name="client")
def client_fixture(db, mock_plaid_client, sync_service, background_service):
    """Create a test client with the test database and mocked Plaid."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user_id] = lambda: TEST_USER_ID
    app.dependency_overrides[_get_plaid_client] = lambda: mock_plaid_client
    app.dependency_overrides[get_sync_service] = lambda: sync_service
    app.dependency_overrides[_get_background_sync_service] = lambda: background_service
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
