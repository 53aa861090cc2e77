import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from coach_core.core.circuit_breaker import CircuitState
from coach_core.core.errors import MemoryCircuitOpenError
from coach_core.core.telemetry import CoachMetric
from coach_core.schemas.coach_memory import (
    EmotionalBaseline,
    ExperienceContext,
    MemoryLayer,
    RelationshipProfile,
    SafetyClass,
    TrustDelta,
    TrustSignal,
)
from coach_core.services.memory_facade import (
    FALLBACK_NARRATIVE,
    DecisionCategory,
    categorize_decision,
    minimize_payload,
    synthetic_trust_history,
)

CONTEXT = ExperienceContext(source_screen="Today", explainability_ref="why:1")


def test_minimize_payload_truncates_long_strings():
    """Strings over the limit keep the first N chars plus a marker."""
    payload = {"note": "x" * 600, "short": "ok", "count": 3}
    minimized = minimize_payload(payload, 500)
    assert minimized["note"] == "x" * 500 + "…"
    assert minimized["short"] == "ok"
    assert minimized["count"] == 3
    assert len(payload["note"]) == 600


def test_categorize_decision_uses_event_type_prefix():
    assert categorize_decision("PlateauDetected:2026-03-02T09:00:00+00:00") == DecisionCategory.plateau
    assert categorize_decision("StrengthPR:2026-03-02") == DecisionCategory.training_streak
    assert categorize_decision("MealLogged:2026-03-02") == DecisionCategory.generic
    # Substrings of other types never match
    assert categorize_decision("NotAPlateau:2026-03-02") == DecisionCategory.generic


def test_synthetic_trust_history_low_trust(wall_clock):
    now = wall_clock()
    first, second = synthetic_trust_history(30, now)
    assert first.timestamp == now - timedelta(days=14)
    assert (first.delta, first.trust_level, first.reason) == (-1, 25, "low_consistency")
    assert second.timestamp == now - timedelta(days=3)
    assert (second.delta, second.trust_level, second.reason) == (1, 30, "recovery_signal")


def test_synthetic_trust_history_floor_and_steady(wall_clock):
    low = synthetic_trust_history(12, wall_clock())
    assert low[0].trust_level == 10
    steady = synthetic_trust_history(80, wall_clock())
    assert [(d.delta, d.reason) for d in steady] == [(1, "steady_rhythm"), (0, "stable_support")]


@pytest.mark.asyncio
async def test_record_experience_persists_minimized_copy(facade, persistence, memory_service, make_event):
    """The port gets a trimmed payload tagged with screen and ref; volatile gets the event."""
    event = make_event(payload={"note": "y" * 800}, trust_impact=1)
    await facade.record_experience(event, CONTEXT)

    [persisted] = persistence.events
    assert persisted.payload["note"] == "y" * 500 + "…"
    assert persisted.payload["source_screen"] == "Today"
    assert persisted.payload["explainability_ref"] == "why:1"
    assert memory_service.recent_events()[0].payload["note"] == "y" * 800
    assert (await memory_service.get_relationship_profile()).trust_level == 55


@pytest.mark.asyncio
async def test_record_experience_failure_still_records_volatile(facade, persistence, memory_service, make_event):
    """A port failure propagates after the in-process copy is updated."""
    persistence.failing = True
    with pytest.raises(ConnectionError):
        await facade.record_experience(make_event(), CONTEXT)
    assert len(memory_service.recent_events()) == 1
    assert facade.breaker.failures == 1


@pytest.mark.asyncio
async def test_open_breaker_skips_port(facade, persistence, memory_service, make_event):
    """Once open, the port is not called but the volatile copy still is."""
    persistence.failing = True
    for _ in range(3):
        with pytest.raises(ConnectionError):
            await facade.record_experience(make_event(), CONTEXT)
    assert facade.breaker.state == CircuitState.open
    calls_before = len(persistence.calls)

    with pytest.raises(MemoryCircuitOpenError):
        await facade.record_experience(make_event(), CONTEXT)
    assert len(persistence.calls) == calls_before
    assert len(memory_service.recent_events()) == 4


@pytest.mark.asyncio
async def test_half_open_success_closes(facade, persistence, clock, make_event):
    persistence.failing = True
    for _ in range(3):
        with pytest.raises(ConnectionError):
            await facade.record_experience(make_event(), CONTEXT)
    persistence.failing = False
    clock.advance_ms(8000)

    await facade.record_experience(make_event(), CONTEXT)
    assert facade.breaker.state == CircuitState.closed
    assert len(persistence.events) == 1


@pytest.mark.asyncio
async def test_load_coach_context_tracks_fetch_time(facade, persistence, telemetry):
    persistence.profile = RelationshipProfile(trust_level=72)
    profile = await facade.load_coach_context()
    assert profile.trust_level == 72
    [record] = telemetry.named(CoachMetric.memory_fetch_time)
    assert record.meta == {"source": "load_coach_context"}


@pytest.mark.asyncio
async def test_load_coach_context_open_circuit(facade, persistence):
    persistence.failing = True
    for _ in range(3):
        with pytest.raises(ConnectionError):
            await facade.load_coach_context()
    with pytest.raises(MemoryCircuitOpenError):
        await facade.load_coach_context()


@pytest.mark.asyncio
async def test_update_trust_model_writes_both_halves(facade, persistence, memory_service, telemetry):
    await facade.update_trust_model(TrustSignal(delta=10, reason="steady_rhythm"))
    assert persistence.trust_updates == [(10, "steady_rhythm")]
    assert (await memory_service.get_relationship_profile()).trust_level == 60
    assert telemetry.named(CoachMetric.trust_update_time)


@pytest.mark.asyncio
async def test_update_trust_model_failure_updates_volatile_then_raises(facade, persistence, memory_service):
    persistence.failing = True
    with pytest.raises(ConnectionError):
        await facade.update_trust_model(TrustSignal(delta=-10, reason="low_consistency"))
    assert (await memory_service.get_relationship_profile()).trust_level == 40


@pytest.mark.asyncio
async def test_clear_trust_model_resets_safety_mode(facade, persistence, memory_service, make_event):
    await memory_service.record_event(make_event("PainReported", safety_class=SafetyClass.medical_risk))
    await facade.clear_trust_model()
    assert persistence.trust_updates == [(0, "trust_reset")]
    assert (await memory_service.get_relationship_profile()).safety_mode is False


@pytest.mark.asyncio
async def test_update_emotional_baseline(facade, persistence, memory_service):
    await facade.update_emotional_baseline(EmotionalBaseline.stabilize)
    assert persistence.baselines == ["stabilize"]
    assert (await memory_service.get_relationship_profile()).emotional_state == EmotionalBaseline.stabilize


@pytest.mark.asyncio
async def test_narrative_from_port(facade, persistence):
    assert await facade.get_long_term_narrative() == persistence.summary


@pytest.mark.asyncio
async def test_narrative_falls_back_on_failure(facade, persistence, telemetry):
    persistence.failing = True
    assert await facade.get_long_term_narrative() == FALLBACK_NARRATIVE
    assert telemetry.counter_total(CoachMetric.coach_fallback_used) == 1


@pytest.mark.asyncio
async def test_reasoning_trace_for_plateau(facade, persistence, wall_clock):
    """Plateau decisions cite the plateau memories; low trust reads as trust repair."""
    persistence.profile = RelationshipProfile(trust_level=30, emotional_state=EmotionalBaseline.support)
    binding = await facade.get_explainable_reasoning_trace("PlateauDetected:2026-03-02T09:00:00+00:00")

    assert [ref.ref for ref in binding.memory_refs] == ["memory:plateau_cycle", "memory:plateau_response"]
    assert binding.memory_refs[0].occurred_at == wall_clock() - timedelta(days=14)
    assert binding.memory_refs[0].layer == MemoryLayer.mid
    assert binding.pattern_matches == ["trust_repair"]
    assert binding.emotional_state == EmotionalBaseline.support
    assert [d.reason for d in binding.trust_history] == ["low_consistency", "recovery_signal"]
    assert binding.safety_flags == []


@pytest.mark.asyncio
async def test_reasoning_trace_safety_flags_for_pain(facade):
    binding = await facade.get_explainable_reasoning_trace("PainReported:2026-03-02T09:00:00+00:00")
    assert binding.safety_flags == ["pain"]
    assert binding.pattern_matches == ["stable_rhythm"]


@pytest.mark.asyncio
async def test_reasoning_trace_prefers_recorded_trust_history(facade, persistence, wall_clock):
    recorded = [TrustDelta(timestamp=wall_clock() - timedelta(days=2), delta=5, trust_level=55, reason="event:DayCompleted")]
    seen = []

    async def load_trust_history(since):
        seen.append(since)
        return recorded

    persistence.load_trust_history = load_trust_history
    binding = await facade.get_explainable_reasoning_trace("DayCompleted:2026-03-02")
    assert binding.trust_history == recorded
    assert seen == [wall_clock() - timedelta(days=30)]


@pytest.mark.asyncio
async def test_reasoning_trace_survives_store_failure(facade, persistence):
    """Failures degrade to neutral defaults instead of raising."""
    persistence.failing = True
    binding = await facade.get_explainable_reasoning_trace("Whatever:2026-03-02")
    assert binding.emotional_state == EmotionalBaseline.calm
    assert [ref.ref for ref in binding.memory_refs] == ["memory:recent_cycle"]
    assert [d.reason for d in binding.trust_history] == ["steady_rhythm", "stable_support"]


@pytest.mark.asyncio
async def test_get_coach_context_passthrough(facade, persistence):
    context = await facade.get_coach_context_for_response()
    assert context.goals == ["run 10k"]
    assert persistence.calls == ["get_coach_context_for_response"]


@pytest.mark.asyncio
async def test_clear_coach_history(facade, persistence):
    await facade.clear_coach_history()
    assert persistence.cleared is True


@pytest.mark.asyncio
async def test_unsupported_forget_does_not_trip_breaker(facade):
    """NotImplementedError from an optional method is not a store failure."""
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    end = datetime(2026, 2, 1, tzinfo=timezone.utc)
    for _ in range(3):
        with pytest.raises(NotImplementedError):
            await facade.forget_memory_period(start, end)
    assert facade.breaker.state == CircuitState.closed
    assert facade.breaker.failures == 0


@pytest.mark.asyncio
async def test_cancelled_half_open_call_is_released(facade, persistence, clock):
    """A half-open call interrupted by cancellation does not wedge the breaker."""
    persistence.failing = True
    for _ in range(3):
        with pytest.raises(ConnectionError):
            await facade.load_coach_context()
    clock.advance_ms(8000)

    persistence.error = asyncio.CancelledError()
    with pytest.raises(asyncio.CancelledError):
        await facade.load_coach_context()

    persistence.failing = False
    await facade.load_coach_context()
    assert facade.breaker.state == CircuitState.closed


@pytest.mark.asyncio
async def test_cancelled_durable_write_releases_slot(facade, persistence, clock, make_event):
    persistence.failing = True
    for _ in range(3):
        with pytest.raises(ConnectionError):
            await facade.record_experience(make_event(), CONTEXT)
    clock.advance_ms(8000)

    persistence.error = asyncio.CancelledError()
    with pytest.raises(asyncio.CancelledError):
        await facade.record_experience(make_event(), CONTEXT)

    persistence.failing = False
    await facade.record_experience(make_event(), CONTEXT)
    assert facade.breaker.state == CircuitState.closed
