"""
Test fixtures for dualstore tests.

Provides an in-memory Store A engine, in-process fake backends and a
controllable clock for circuit breaker timing.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Generator, Optional, Tuple

import pytest
from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy.pool import StaticPool

import dualstore.models  # noqa: F401 - registers tables with SQLModel
from dualstore.core.circuit_breaker import CircuitBreakerRegistry
from dualstore.core.errors import BackendWriteError
from dualstore.schemas import WriteOutcome, WriteRecord
from dualstore.services.adapters import STORE_A, STORE_B
from dualstore.services.dual_write import DualWriteCoordinator

# Use in-memory SQLite for unit tests (fast, isolated)
TEST_DATABASE_URL = "sqlite:///:memory:"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeAdapter:
    """
    In-process backend.

    Flip `fail` to make every call raise, set `delay` to make calls slow,
    set `healthy` to control the health probe.
    """

    def __init__(self, name: str):
        self.name = name
        self.fail = False
        self.delay = 0.0
        self.healthy = True
        self.error: Exception = BackendWriteError(name, f"{name} unavailable")
        self.records: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.calls: list = []

    async def write(self, record: WriteRecord) -> WriteOutcome:
        self.calls.append(("write", record.collection, record.id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise self.error
        row = {**record.payload, "id": record.id}
        self.records[(record.collection, record.id)] = row
        return WriteOutcome(backend=self.name, record_id=record.id, data=row)

    async def read(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        self.calls.append(("read", collection, record_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise self.error
        return self.records.get((collection, record_id))

    async def health_check(self) -> bool:
        return self.healthy


@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def test_session(test_engine) -> Generator[Session, None, None]:
    """Provide a test database session."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(clock: FakeClock) -> CircuitBreakerRegistry:
    """Isolated registry; breakers open after 3 failures for 60 seconds."""
    return CircuitBreakerRegistry(failure_threshold=3, open_timeout=60.0, clock=clock)


@pytest.fixture
def fake_store_a() -> FakeAdapter:
    return FakeAdapter(STORE_A)


@pytest.fixture
def fake_store_b() -> FakeAdapter:
    return FakeAdapter(STORE_B)


@pytest.fixture
def coordinator(fake_store_a, fake_store_b, registry) -> DualWriteCoordinator:
    return DualWriteCoordinator(fake_store_a, fake_store_b, registry, timeout=1.0)


@pytest.fixture
def user_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def auth_identity(user_id: str) -> Dict[str, Any]:
    """A complete Store B auth identity, as returned by the auth admin API."""
    return {
        "id": user_id,
        "email": "ada@example.com",
        "phone": None,
        "email_confirmed_at": "2026-01-01T10:00:00+00:00",
        "last_sign_in_at": "2026-01-02T09:30:00+00:00",
        "created_at": "2026-01-01T09:00:00+00:00",
        "updated_at": "2026-01-02T09:30:00+00:00",
        "user_metadata": {
            "username": "ada",
            "full_name": "Ada Lovelace",
            "avatar_url": "https://cdn.example.com/ada.png",
        },
        "app_metadata": {"provider": "email"},
        "aud": "authenticated",
    }
