"""Process wiring: one coach runtime per process, built at startup."""

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coach_core.config import Settings
from coach_core.core.circuit_breaker import CircuitBreaker
from coach_core.core.telemetry import LoggingTelemetrySink, TelemetrySink
from coach_core.services.coach_runtime import CoachRuntime, InterventionPolicy
from coach_core.services.memory_facade import MemoryFacade
from coach_core.services.memory_persistence import (
    MemoryPersistencePort,
    NullMemoryPersistence,
    SqlMemoryPersistence,
)
from coach_core.services.memory_service import InProcessMemoryService


def build_persistence(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> MemoryPersistencePort:
    if settings.memory_backend == "sql":
        if session_factory is None:
            raise ValueError("memory_backend=sql requires a session factory")
        return SqlMemoryPersistence(session_factory, settings.coach_user_key)
    if settings.memory_backend == "null":
        return NullMemoryPersistence()
    raise ValueError(f"Unknown memory_backend: {settings.memory_backend!r}")


def build_runtime(
    settings: Settings,
    *,
    persistence: MemoryPersistencePort | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    telemetry: TelemetrySink | None = None,
) -> CoachRuntime:
    telemetry = telemetry or LoggingTelemetrySink(settings.telemetry_budgets_ms)
    facade = MemoryFacade(
        InProcessMemoryService(),
        persistence or build_persistence(settings, session_factory),
        breaker=CircuitBreaker(
            "coach_memory_facade",
            failure_threshold=settings.memory_breaker_failure_threshold,
            reset_timeout_ms=settings.memory_breaker_reset_timeout_ms,
        ),
        telemetry=telemetry,
        payload_max_chars=settings.payload_max_chars,
    )
    return CoachRuntime(
        facade,
        telemetry=telemetry,
        policy=InterventionPolicy(
            daily_nudge_limit=settings.daily_nudge_limit,
            min_interval_minutes=settings.nudge_min_interval_minutes,
            cooldown_after_ignore_hours=settings.nudge_cooldown_after_ignore_hours,
            ignore_threshold=settings.nudge_ignore_threshold,
        ),
        runtime_breaker=CircuitBreaker(
            "coach_runtime",
            failure_threshold=settings.runtime_breaker_failure_threshold,
            reset_timeout_ms=settings.breaker_reset_timeout_ms,
        ),
        explainability_breaker=CircuitBreaker(
            "coach_explainability",
            failure_threshold=settings.explainability_breaker_failure_threshold,
            reset_timeout_ms=settings.breaker_reset_timeout_ms,
        ),
        dedupe_capacity=settings.dedupe_capacity,
    )


def get_runtime(request: Request) -> CoachRuntime:
    return request.app.state.coach_runtime
