"""Shared test fixtures: fake clocks, scripted memory store, in-memory SQLite, test client."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from coach_core.core.circuit_breaker import CircuitBreaker
from coach_core.core.telemetry import InMemoryTelemetrySink
from coach_core.dependencies import get_runtime
from coach_core.main import app
from coach_core.models.base import Base
from coach_core.schemas.coach import CoachScreenContext
from coach_core.schemas.coach_memory import (
    CoachLongTermContext,
    CoachMemoryEvent,
    RelationshipProfile,
)
from coach_core.services.coach_runtime import CoachRuntime, InterventionPolicy
from coach_core.services.memory_facade import MemoryFacade
from coach_core.services.memory_persistence import MemoryPersistencePort
from coach_core.services.memory_service import InProcessMemoryService

import coach_core.models  # noqa: F401

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
BASE_TIME = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock in seconds, advanced by hand."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


class FakeNow:
    """Wall clock (aware UTC datetime), advanced by hand."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.value = start

    def __call__(self) -> datetime:
        return self.value

    def advance(self, **kwargs) -> None:
        self.value += timedelta(**kwargs)


class ScriptedPersistence(MemoryPersistencePort):
    """Port double: records calls; raises `error` from every call while `failing`."""

    def __init__(self) -> None:
        self.failing = False
        self.error: Exception = ConnectionError("network unreachable")
        self.calls: list[str] = []
        self.events: list[CoachMemoryEvent] = []
        self.trust_updates: list[tuple[int, str | None]] = []
        self.baselines: list[str] = []
        self.profile = RelationshipProfile()
        self.summary = "We've come a long way together."
        self.context = CoachLongTermContext(goals=["run 10k"])
        self.cleared = False

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if self.failing:
            raise self.error

    async def persist_event_memory(self, event):
        self._call("persist_event_memory")
        self.events.append(event)

    async def load_long_term_profile(self):
        self._call("load_long_term_profile")
        return self.profile

    async def update_trust_curve(self, delta, reason=None):
        self._call("update_trust_curve")
        self.trust_updates.append((delta, reason))

    async def update_emotional_baseline(self, state):
        self._call("update_emotional_baseline")
        self.baselines.append(state.value)

    async def summarize_user_journey(self):
        self._call("summarize_user_journey")
        return self.summary

    async def get_coach_context_for_response(self):
        self._call("get_coach_context_for_response")
        return self.context

    async def clear_coach_memory(self):
        self._call("clear_coach_memory")
        self.cleared = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def wall_clock() -> FakeNow:
    return FakeNow()


@pytest.fixture
def telemetry() -> InMemoryTelemetrySink:
    return InMemoryTelemetrySink()


@pytest.fixture
def persistence() -> ScriptedPersistence:
    return ScriptedPersistence()


@pytest.fixture
def memory_service() -> InProcessMemoryService:
    return InProcessMemoryService()


@pytest.fixture
def memory_breaker(clock) -> CircuitBreaker:
    return CircuitBreaker("test_memory", failure_threshold=3, reset_timeout_ms=8000, clock=clock)


@pytest.fixture
def facade(memory_service, persistence, memory_breaker, telemetry, wall_clock) -> MemoryFacade:
    return MemoryFacade(
        memory_service,
        persistence,
        breaker=memory_breaker,
        telemetry=telemetry,
        now=wall_clock,
    )


@pytest.fixture
def runtime(facade, telemetry, clock, wall_clock) -> CoachRuntime:
    return CoachRuntime(
        facade,
        telemetry=telemetry,
        policy=InterventionPolicy(),
        runtime_breaker=CircuitBreaker("test_runtime", failure_threshold=2, clock=clock),
        explainability_breaker=CircuitBreaker(
            "test_explainability", failure_threshold=2, clock=clock
        ),
        now=wall_clock,
    )


@pytest.fixture
def make_event():
    def _make(event_type: str = "DayCompleted", **overrides) -> CoachMemoryEvent:
        data = {"type": event_type, "timestamp": BASE_TIME, "confidence": 0.9}
        data.update(overrides)
        return CoachMemoryEvent(**data)

    return _make


@pytest.fixture
def make_context():
    def _make(**overrides) -> CoachScreenContext:
        data = {"screen": "Today", "subscription_state": "Premium"}
        data.update(overrides)
        return CoachScreenContext(**data)

    return _make


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory database per test."""
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def client(runtime: CoachRuntime) -> AsyncClient:
    """Yield an httpx AsyncClient wired to the test runtime."""
    app.dependency_overrides[get_runtime] = lambda: runtime
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
