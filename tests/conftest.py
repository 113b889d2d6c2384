"""
Pytest configuration and fixtures for CreditGate tests.
"""
import os
import pytest
from datetime import datetime

# Set test environment before importing creditgate modules
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["QUEUE_ENGINE"] = "memory"
os.environ["ADMIN_SECRET"] = "test-admin-secret-for-testing-only-32chars"
os.environ["DEBUG"] = "true"

ADMIN_SECRET = os.environ["ADMIN_SECRET"]

SURGE_DATE = datetime(2025, 6, 20, 12, 0, 0)
NORMAL_DATE = datetime(2025, 5, 20, 12, 0, 0)


class FixedClock:
    """Callable clock returning a settable instant."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    """Clock pinned outside the surge window."""
    return FixedClock(NORMAL_DATE)


@pytest.fixture
def app_config():
    """In-memory configuration with the default June 15-30 surge window."""
    from creditgate.config import AppConfig, LedgerConfig, QueueConfig

    return AppConfig(
        ledger=LedgerConfig(default_balance=1000.0, min_admission_credits=1.0),
        queue=QueueConfig(engine="memory"),
        storage_backend="memory",
        admin_secret=ADMIN_SECRET,
        debug=True,
    )


@pytest.fixture
def queue_engine():
    from creditgate.queue import InMemoryQueueEngine
    return InMemoryQueueEngine()


@pytest.fixture
def container(app_config, queue_engine, clock):
    """Independent service container per test."""
    from creditgate.container import ServiceContainer

    container = ServiceContainer(app_config, engine=queue_engine, clock=clock)
    yield container
    container.shutdown()


@pytest.fixture
def ledger():
    """Credit ledger over an in-memory repository."""
    from creditgate.credits import CreditLedger
    from creditgate.persistence import InMemoryLedgerRepository

    return CreditLedger(InMemoryLedgerRepository(), default_balance=1000)


@pytest.fixture
def sqlite_db():
    """In-memory SQLite database with the schema applied."""
    from creditgate.persistence import Database

    db = Database(":memory:")
    yield db
    db.close()


@pytest.fixture
def test_client(container):
    """Create a test client for API testing."""
    from fastapi.testclient import TestClient
    from creditgate.api.main import create_app

    return TestClient(create_app(container))


@pytest.fixture
def admin_headers():
    return {"X-Admin-Secret": ADMIN_SECRET}
