"""Pytest fixtures for the matching backend.

Provides reusable test fixtures for:
- In-memory SQLite database session, fresh schema per test
- In-process user directory and notifier fakes
- Profile and queue entry factories
- FastAPI test client with dependency overrides and JWT helpers

Usage:
    def test_enroll(client, auth_headers):
        user_id = uuid4()
        response = client.post("/api/v1/matching/queue", json={...}, headers=auth_headers(user_id))
        assert response.status_code == 201
"""

import os
import sys
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional
from uuid import UUID, uuid4

# Set environment variables BEFORE any imports to ensure they take effect
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-key-256-bits-minimum-length-required-for-security")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

backend_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(backend_src))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from linkup.auth.jwt import create_access_token
from linkup.matching.errors import NotFoundError, UnavailableError
from linkup.matching.ports import (
    MatchNotifierPort,
    MatchResult,
    QueueConstraints,
    UserDirectoryPort,
    UserScoringProfile,
)
from linkup.matching.queue import QueueManager
from linkup.models import Base, QueueEntry


NOW = 1_700_000_000_000
MINUTE = 60_000
HOUR = 60 * MINUTE

test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


class FakeUserDirectory(UserDirectoryPort):
    """In-memory directory. Users in ``unavailable`` fail like a timed-out lookup."""

    def __init__(self):
        self.profiles: Dict[UUID, UserScoringProfile] = {}
        self.unavailable = set()
        self.lookups: List[UUID] = []

    def add(self, profile: UserScoringProfile) -> UserScoringProfile:
        self.profiles[profile.user_id] = profile
        return profile

    def get_profile(self, user_id: UUID) -> UserScoringProfile:
        self.lookups.append(user_id)
        if user_id in self.unavailable:
            raise UnavailableError(f"Directory unavailable for {user_id}")
        if user_id not in self.profiles:
            raise NotFoundError(f"No profile for user {user_id}")
        return self.profiles[user_id]


class RecordingNotifier(MatchNotifierPort):
    """Collects match-created events; raises when ``fail`` is set."""

    def __init__(self):
        self.events: List[MatchResult] = []
        self.fail = False

    def notify(self, result: MatchResult) -> None:
        if self.fail:
            raise RuntimeError("meeting scheduler unreachable")
        self.events.append(result)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Fresh in-memory database for each test.

    Creates all tables before the test and drops them after.
    """
    Base.metadata.create_all(bind=test_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def directory() -> FakeUserDirectory:
    return FakeUserDirectory()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_profile(directory: FakeUserDirectory) -> Callable[..., UserScoringProfile]:
    """Factory registering a profile in the fake directory.

    Defaults describe a mid-level software engineer in Berlin who speaks
    English and likes machine learning.
    """

    def _make(user_id: Optional[UUID] = None, **overrides) -> UserScoringProfile:
        values = {
            "interests": ["machine learning", "python"],
            "languages": ["en"],
            "experience_level": "mid",
            "industry": "software",
            "company": None,
            "role": None,
            "timezone": "+01:00",
            "org_id": None,
        }
        values.update(overrides)
        return directory.add(UserScoringProfile(user_id=user_id or uuid4(), **values))

    return _make


@pytest.fixture
def enroll(db_session: Session) -> Callable[..., QueueEntry]:
    """Factory enrolling a user with a two-hour window open at NOW."""

    def _enroll(
        user_id: UUID,
        now: int = NOW,
        available_from: Optional[int] = None,
        available_to: Optional[int] = None,
        **constraints,
    ) -> QueueEntry:
        return QueueManager(db_session).enroll(
            user_id,
            available_from if available_from is not None else now,
            available_to if available_to is not None else now + 2 * HOUR,
            QueueConstraints(**constraints),
            now=now,
        )

    return _enroll


@pytest.fixture
def auth_headers() -> Callable[..., Dict[str, str]]:
    """Build an Authorization header for a user id and role."""

    def _headers(user_id: UUID, role: str = "MEMBER") -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id=user_id, role=role)}"}

    return _headers


@pytest.fixture
def client(db_session: Session, directory: FakeUserDirectory, notifier: RecordingNotifier):
    """Test client with the database, directory and notifier replaced by test doubles."""
    from linkup.database import get_db
    from linkup.dependencies import get_match_notifier, get_user_directory
    from linkup.main import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_user_directory] = lambda: directory
    app.dependency_overrides[get_match_notifier] = lambda: notifier

    yield TestClient(app)

    app.dependency_overrides.clear()
