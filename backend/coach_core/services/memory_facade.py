"""Memory facade: the single front door to coach memory.

Hides the split between the volatile in-process memory service and the
durable persistence port. Every port call passes through the memory circuit
breaker; payloads are minimized before they leave the process.

Write paths (record_experience, update_trust_model) propagate port failures
after the volatile copy has been updated. Read paths with safe defaults
(narrative, reasoning trace) absorb failures locally.
"""

import enum
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

from coach_core.core.best_effort import best_effort
from coach_core.core.circuit_breaker import CircuitBreaker
from coach_core.core.errors import MemoryCircuitOpenError
from coach_core.core.telemetry import CoachMetric, LoggingTelemetrySink, TelemetrySink
from coach_core.schemas.coach_memory import (
    CoachEventType,
    CoachExplainabilityBinding,
    CoachLongTermContext,
    CoachMemoryEvent,
    CoachMemoryTrace,
    EmotionalBaseline,
    ExperienceContext,
    MemoryLayer,
    RelationshipProfile,
    TrustDelta,
    TrustSignal,
)
from coach_core.services.memory_persistence import MemoryPersistencePort
from coach_core.services.memory_service import InProcessMemoryService
from coach_core.services.relationship import TRUST_RESET_REASON

logger = logging.getLogger("potok.memory")

T = TypeVar("T")

TRUNCATION_MARKER = "…"
DEFAULT_PAYLOAD_MAX_CHARS = 500
DEFAULT_TRUST_LEVEL = 50
TRUST_HISTORY_WINDOW_DAYS = 30
FALLBACK_NARRATIVE = (
    "You've been through different phases. I take your resilience and recovery into account."
)


def minimize_payload(
    payload: dict[str, Any] | None, max_chars: int = DEFAULT_PAYLOAD_MAX_CHARS
) -> dict[str, Any]:
    """Truncate long top-level strings before they are persisted."""
    minimized: dict[str, Any] = {}
    for key, value in (payload or {}).items():
        if isinstance(value, str) and len(value) > max_chars:
            minimized[key] = value[:max_chars] + TRUNCATION_MARKER
        else:
            minimized[key] = value
    return minimized


# --- Decision categories for reasoning traces ---


class DecisionCategory(str, enum.Enum):
    plateau = "plateau"
    habit_break = "habit_break"
    return_after_pause = "return_after_pause"
    calorie_over_target = "calorie_over_target"
    training_streak = "training_streak"
    generic = "generic"


@dataclass(frozen=True)
class MemoryRefTemplate:
    ref: str
    summary: str
    days_ago: int
    layer: MemoryLayer
    tags: tuple[str, ...]

    def build(self, now: datetime) -> CoachMemoryTrace:
        return CoachMemoryTrace(
            ref=self.ref,
            summary=self.summary,
            occurred_at=now - timedelta(days=self.days_ago),
            layer=self.layer,
            tags=list(self.tags),
        )


CATEGORY_BY_EVENT: dict[str, DecisionCategory] = {
    CoachEventType.plateau_detected.value: DecisionCategory.plateau,
    CoachEventType.habit_broken.value: DecisionCategory.habit_break,
    CoachEventType.return_after_pause.value: DecisionCategory.return_after_pause,
    CoachEventType.calorie_over_target.value: DecisionCategory.calorie_over_target,
    CoachEventType.workout_completed.value: DecisionCategory.training_streak,
    CoachEventType.strength_pr.value: DecisionCategory.training_streak,
}

MEMORY_REF_TEMPLATES: dict[DecisionCategory, tuple[MemoryRefTemplate, ...]] = {
    DecisionCategory.plateau: (
        MemoryRefTemplate(
            "memory:plateau_cycle",
            "You went through a similar dip two weeks ago.",
            14,
            MemoryLayer.mid,
            ("plateau", "recovery"),
        ),
        MemoryRefTemplate(
            "memory:plateau_response",
            "Back then, easing the load and getting the rhythm back helped.",
            12,
            MemoryLayer.mid,
            ("adjustment", "consistency"),
        ),
    ),
    DecisionCategory.habit_break: (
        MemoryRefTemplate(
            "memory:habit_slip",
            "A similar slip happened before, and coming back took only a couple of days.",
            10,
            MemoryLayer.short,
            ("habit", "recovery"),
        ),
    ),
    DecisionCategory.return_after_pause: (
        MemoryRefTemplate(
            "memory:return_cycle",
            "After a pause, a gentle start and short goals worked for you.",
            30,
            MemoryLayer.long,
            ("restart", "motivation"),
        ),
    ),
    DecisionCategory.calorie_over_target: (
        MemoryRefTemplate(
            "memory:nutrition_balance",
            "Earlier, a light calorie adjustment helped restore balance.",
            7,
            MemoryLayer.short,
            ("nutrition", "balance"),
        ),
    ),
    DecisionCategory.training_streak: (
        MemoryRefTemplate(
            "memory:training_streak",
            "Regular workouts keep supporting your progress and confidence.",
            5,
            MemoryLayer.short,
            ("training", "consistency"),
        ),
    ),
    DecisionCategory.generic: (
        MemoryRefTemplate(
            "memory:recent_cycle",
            "A similar phase happened before, and gently reducing the load helped.",
            14,
            MemoryLayer.mid,
            ("recovery", "consistency"),
        ),
    ),
}

SAFETY_FLAGS_BY_EVENT: dict[str, tuple[str, ...]] = {
    CoachEventType.pain_reported.value: ("pain",),
    CoachEventType.fatigue_reported.value: ("fatigue",),
}


def decision_event_type(decision_id: str) -> str:
    """Decision ids are `{eventType}:{timestamp}`; the leading segment is the type."""
    return decision_id.split(":", 1)[0]


def categorize_decision(decision_id: str) -> DecisionCategory:
    return CATEGORY_BY_EVENT.get(decision_event_type(decision_id), DecisionCategory.generic)


def synthetic_trust_history(trust_level: int, now: datetime) -> list[TrustDelta]:
    """Two points (14 and 3 days ago) derived from the current trust level.

    Used when the store keeps no trust log for the window.
    """
    low = trust_level < 40
    return [
        TrustDelta(
            timestamp=now - timedelta(days=14),
            delta=-1 if low else 1,
            trust_level=max(10, trust_level - 5),
            reason="low_consistency" if low else "steady_rhythm",
        ),
        TrustDelta(
            timestamp=now - timedelta(days=3),
            delta=1 if low else 0,
            trust_level=trust_level,
            reason="recovery_signal" if low else "stable_support",
        ),
    ]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryFacade:
    def __init__(
        self,
        memory_service: InProcessMemoryService,
        persistence: MemoryPersistencePort,
        *,
        breaker: CircuitBreaker | None = None,
        telemetry: TelemetrySink | None = None,
        payload_max_chars: int = DEFAULT_PAYLOAD_MAX_CHARS,
        now: Callable[[], datetime] = _utcnow,
    ):
        self._memory = memory_service
        self._persistence = persistence
        self._breaker = breaker or CircuitBreaker("coach_memory_facade")
        self._telemetry = telemetry or LoggingTelemetrySink()
        self._payload_max_chars = payload_max_chars
        self._now = now

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def _guarded(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run one port call behind the memory breaker."""
        if not self._breaker.can_request():
            raise MemoryCircuitOpenError()
        try:
            result = await operation()
        except NotImplementedError:
            # Unsupported optional method: the store answered.
            self._breaker.record_success()
            raise
        except Exception:
            self._breaker.record_failure()
            raise
        finally:
            self._breaker.release_trial()
        self._breaker.record_success()
        return result

    async def _record_volatile(self, event: CoachMemoryEvent) -> None:
        await best_effort(
            lambda: self._memory.record_event(event),
            default=None,
            label="memory_service.record_event",
            telemetry=self._telemetry,
        )

    async def record_experience(
        self, event: CoachMemoryEvent, context: ExperienceContext
    ) -> None:
        """Persist a minimized copy durably and record the event in-process.

        The volatile copy is recorded even when the breaker is open or the
        port fails, so the live coach keeps reacting during an outage.
        """
        if not self._breaker.can_request():
            await self._record_volatile(event)
            raise MemoryCircuitOpenError()

        payload = minimize_payload(event.payload, self._payload_max_chars)
        payload["source_screen"] = context.source_screen
        payload["explainability_ref"] = context.explainability_ref
        persisted = event.model_copy(update={"payload": payload})

        failure: Exception | None = None
        try:
            await self._persistence.persist_event_memory(persisted)
            self._breaker.record_success()
        except Exception as exc:
            self._breaker.record_failure()
            failure = exc
        finally:
            self._breaker.release_trial()

        await self._record_volatile(event)
        if failure is not None:
            raise failure

    async def load_coach_context(self) -> RelationshipProfile:
        started = time.perf_counter()
        profile = await self._guarded(self._persistence.load_long_term_profile)
        self._telemetry.track_timing(
            CoachMetric.memory_fetch_time,
            (time.perf_counter() - started) * 1000,
            {"source": "load_coach_context"},
        )
        return profile

    async def update_trust_model(self, signal: TrustSignal) -> None:
        started = time.perf_counter()
        failure: Exception | None = None
        try:
            await self._guarded(
                lambda: self._persistence.update_trust_curve(signal.delta, signal.reason)
            )
        except Exception as exc:
            failure = exc
        await self._memory.update_trust(signal.delta, signal.reason)
        self._telemetry.track_timing(
            CoachMetric.trust_update_time,
            (time.perf_counter() - started) * 1000,
            {"reason": signal.reason or "unknown"},
        )
        if failure is not None:
            raise failure

    async def update_emotional_baseline(self, state: EmotionalBaseline) -> None:
        await self._memory.update_emotional_state(state)
        await self._guarded(lambda: self._persistence.update_emotional_baseline(state))

    async def get_long_term_narrative(self) -> str:
        return await best_effort(
            lambda: self._guarded(self._persistence.summarize_user_journey),
            default=FALLBACK_NARRATIVE,
            label="summarize_user_journey",
            telemetry=self._telemetry,
        )

    async def get_explainable_reasoning_trace(
        self, decision_id: str
    ) -> CoachExplainabilityBinding:
        """Synthesize the "why" for a decision. Never raises on store failure."""
        profile = await best_effort(
            self._timed_profile_load,
            default=None,
            label="load_long_term_profile",
            telemetry=self._telemetry,
        )
        now = self._now()
        trust_level = profile.trust_level if profile else DEFAULT_TRUST_LEVEL
        emotional_state = profile.emotional_state if profile else EmotionalBaseline.calm

        trust_history: list[TrustDelta] = []
        if profile is not None:
            since = now - timedelta(days=TRUST_HISTORY_WINDOW_DAYS)
            trust_history = await best_effort(
                lambda: self._guarded(lambda: self._persistence.load_trust_history(since)),
                default=[],
                label="load_trust_history",
                telemetry=self._telemetry,
            )
        if not trust_history:
            trust_history = synthetic_trust_history(trust_level, now)

        category = categorize_decision(decision_id)
        return CoachExplainabilityBinding(
            decision_id=decision_id,
            memory_refs=[template.build(now) for template in MEMORY_REF_TEMPLATES[category]],
            trust_history=trust_history,
            emotional_state=emotional_state,
            safety_flags=list(SAFETY_FLAGS_BY_EVENT.get(decision_event_type(decision_id), ())),
            pattern_matches=["trust_repair"] if trust_level < 40 else ["stable_rhythm"],
        )

    async def _timed_profile_load(self) -> RelationshipProfile:
        started = time.perf_counter()
        profile = await self._guarded(self._persistence.load_long_term_profile)
        self._telemetry.track_timing(
            CoachMetric.memory_fetch_time,
            (time.perf_counter() - started) * 1000,
            {"source": "get_explainable_reasoning_trace"},
        )
        return profile

    async def get_coach_context_for_response(self) -> CoachLongTermContext:
        return await self._guarded(self._persistence.get_coach_context_for_response)

    async def get_volatile_profile(self) -> RelationshipProfile:
        return await self._memory.get_relationship_profile()

    async def clear_coach_history(self) -> None:
        try:
            await self._guarded(self._persistence.clear_coach_memory)
        except NotImplementedError:
            logger.info("clear_coach_memory not supported by %s", type(self._persistence).__name__)

    async def forget_memory_period(self, start: datetime, end: datetime) -> None:
        await self._guarded(lambda: self._persistence.forget_memory_period(start, end))

    async def clear_trust_model(self) -> None:
        await self.update_trust_model(TrustSignal(delta=0, reason=TRUST_RESET_REASON))
