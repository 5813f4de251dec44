"""Pytest fixtures for testing."""
import os

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["GEMINI_API_KEY"] = ""

from datetime import datetime  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.db.database import Base, get_db, get_session_factory  # noqa: E402
from app.db.models import ActivityEvent, User  # noqa: E402
from app.main import app  # noqa: E402


@pytest.fixture(scope="function")
def test_db():
    """Create a test database for each test."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    SessionLocal = sessionmaker(bind=engine)
    db = SessionLocal()

    yield db

    db.close()
    engine.dispose()


@pytest.fixture
def test_user(test_db):
    """Create a test user."""
    user = User(id="sl_test_user_123", current_difficulty="beginner")
    test_db.add(user)
    test_db.commit()
    return user


@pytest.fixture
def api_sessions(tmp_path):
    """Session factory over a file-backed SQLite database shared across threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'api.db'}",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    yield TestingSessionLocal

    engine.dispose()


@pytest.fixture
def test_client(api_sessions):
    """Test client with database dependencies pointed at the test database."""
    def override_get_db():
        db = api_sessions()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: api_sessions

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def make_event():
    """Build transient ActivityEvent rows for pure aggregation tests."""
    counter = {"n": 0}

    def _make(event_type="learning", timestamp=None, score=None, topic="Recursion", difficulty="beginner"):
        counter["n"] += 1
        return ActivityEvent(
            id=f"evt-{counter['n']}",
            user_id="sl_test_user_123",
            topic=topic,
            type=event_type,
            difficulty=difficulty,
            score=score,
            timestamp=timestamp or datetime(2026, 10, 21, 12, 0),
        )

    return _make
