import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from capgate.config import Settings
from capgate.database import Base
from capgate.dependencies import get_cap_service
from capgate.main import app
from capgate.models.cap_record import CapRecord  # noqa: F401 - registers the table
from capgate.middleware.rate_limit import limiter
from capgate.services.cap_service import CapService
from capgate.storage.memory import MemoryStorage


@pytest.fixture
def test_settings():
    """Cheap challenges and no rate limiting unless a test opts in."""
    return Settings(
        _env_file=None,
        challenge_count=3,
        challenge_size=16,
        challenge_difficulty=1,
        challenge_expires=600,
        token_expires=1200,
        rate_limit_rps=0,
        rate_limit_burst=0,
    )


@pytest.fixture
def memory_storage():
    return MemoryStorage()


@pytest.fixture
def cap_service(test_settings, memory_storage):
    return CapService(memory_storage, test_settings)


@pytest.fixture
def session_factory():
    """Fresh in-memory database with the cap_records table."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(cap_service):
    """Test client wired to the test CapService, with operator rate limits off."""
    app.dependency_overrides[get_cap_service] = lambda: cap_service
    limiter.enabled = False

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    limiter.enabled = True
