"""Pytest configuration and fixtures."""

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from src.db.turso import TursoClient
from src.events.analytics import RecognitionAnalytics
from src.events.store import EventStore
from src.events.types import AuditEvent
from src.identity.cache import RecognitionCache
from src.identity.engine import RecognitionEngine
from src.identity.review_queue import ReviewQueueManager
from src.identity.schemas import IdentityRecord
from src.main import app
from src.repositories.profile_repo import ProfileRepository
from src.security.access import ApiKeyAccessValidator

TENANT = "church-1"
OTHER_TENANT = "church-2"
API_KEY = "test-key-1"
ADMIN_KEY = "admin-key-1"


class RecordingAuditSink:
    """AuditSink that keeps events in memory."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def record(self, event: AuditEvent) -> None:
        self.events.append(event)

    @property
    def actions(self) -> list[str]:
        return [e.action.value for e in self.events]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _make_record(**overrides) -> IdentityRecord:
    data = {
        "tenant_id": TENANT,
        "first_name": "John",
        "last_name": "Smith",
        "email": "john@example.com",
        "phone": "5551234567",
    }
    data.update(overrides)
    return IdentityRecord(**data)


@pytest.fixture
def make_record():
    """Factory for IdentityRecords in tenant church-1 (John Smith by default)."""
    return _make_record


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> RecognitionCache:
    """Cache with a 30 second TTL driven by the fake clock."""
    return RecognitionCache(ttl_seconds=30.0, max_entries=100, clock=clock)


@pytest.fixture
async def db_client(tmp_path: Path) -> AsyncIterator[TursoClient]:
    """Create a temp file database client for testing."""
    db_path = tmp_path / "test_recognition.db"
    client = TursoClient(url=f"file:{db_path}")
    await client.connect()
    yield client
    await client.close()


@pytest.fixture
async def profile_repo(db_client: TursoClient) -> ProfileRepository:
    """ProfileRepository with initialized tables."""
    repo = ProfileRepository(db_client)
    await repo.initialize()
    return repo


@pytest.fixture
async def client(tmp_path: Path) -> AsyncIterator[AsyncClient]:
    """Create async test client for FastAPI app with database."""
    db_path = tmp_path / "test_api.db"
    db = TursoClient(url=f"file:{db_path}")
    await db.connect()

    event_store = EventStore(db)
    await event_store.init_schema()
    repo = ProfileRepository(db)
    await repo.initialize()
    cache = RecognitionCache()
    sink = RecordingAuditSink()

    # Set up app state
    app.state.db = db
    app.state.event_store = event_store
    app.state.profile_repo = repo
    app.state.recognition_cache = cache
    app.state.recognition_engine = RecognitionEngine(repo, cache, sink)
    app.state.review_manager = ReviewQueueManager(repo, sink, cache=cache)
    app.state.recognition_analytics = RecognitionAnalytics(db, identity_store=repo)
    app.state.access_validator = ApiKeyAccessValidator({TENANT: API_KEY}, {TENANT: ADMIN_KEY})
    app.state.recognition_limiter = None
    app.state.admin_limiter = None

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    # Cleanup
    await db.close()
    for name in (
        "db",
        "event_store",
        "profile_repo",
        "recognition_cache",
        "recognition_engine",
        "review_manager",
        "recognition_analytics",
        "access_validator",
        "recognition_limiter",
        "admin_limiter",
    ):
        delattr(app.state, name)
