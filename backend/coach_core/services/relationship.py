"""Relationship profile evolution: pure functions shared by memory stores.

Each function returns a new profile; inputs are never mutated.
"""

from coach_core.schemas.coach_memory import (
    CoachEventType,
    CoachMemoryEvent,
    EmotionalBaseline,
    RelationshipProfile,
    RelationshipStage,
    SafetyClass,
    utcnow,
)

TRUST_POINTS_PER_IMPACT = 5
TRUST_RESET_REASON = "trust_reset"
TRUST_MILESTONES = (40, 70, 85)

RELAPSE_EVENTS = frozenset({
    CoachEventType.habit_broken.value,
    CoachEventType.day_skipped.value,
    CoachEventType.training_skipped.value,
    CoachEventType.regression_detected.value,
})

RECOVERY_EVENTS = frozenset({
    CoachEventType.streak_recovered.value,
    CoachEventType.return_after_pause.value,
    CoachEventType.day_completed.value,
    CoachEventType.habit_completed.value,
})

ONBOARDING_EVENT_COUNT = 3
COMPANION_EVENT_COUNT = 50


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp_trust(value: float) -> int:
    return int(round(clamp(value, 0, 100)))


def default_profile() -> RelationshipProfile:
    """Neutral profile for users the coach has never seen."""
    return RelationshipProfile()


def derive_stage(
    trust_level: int, event_count: int, event_type: str | None = None
) -> RelationshipStage:
    if event_type in RELAPSE_EVENTS and trust_level < 40:
        return RelationshipStage.relapse_recovery
    if event_count < ONBOARDING_EVENT_COUNT:
        return RelationshipStage.onboarding
    if trust_level >= 85 and event_count >= COMPANION_EVENT_COUNT:
        return RelationshipStage.long_term_companion
    if trust_level >= 60:
        return RelationshipStage.stable_partnership
    return RelationshipStage.trust_building


def apply_event(profile: RelationshipProfile, event: CoachMemoryEvent) -> RelationshipProfile:
    """Fold one behavioural event into the profile (additive update)."""
    impact = event.trust_impact
    trust_level = clamp_trust(profile.trust_level + impact * TRUST_POINTS_PER_IMPACT)

    autonomy = profile.autonomy
    if impact > 0:
        autonomy += profile.confidence_growth * 0.05 * impact
    elif impact < 0:
        autonomy -= profile.confidence_decay * 0.05 * abs(impact)

    resilience = profile.resilience
    if event.type in RECOVERY_EVENTS:
        resilience += profile.confidence_growth * 0.1

    update = {
        "trust_level": trust_level,
        "autonomy": clamp(autonomy, 0.0, 1.0),
        "resilience": clamp(resilience, 0.0, 1.0),
        "event_count": profile.event_count + 1,
        "last_updated": utcnow(),
    }
    update["stage"] = derive_stage(trust_level, update["event_count"], event.type)
    if event.safety_class == SafetyClass.medical_risk:
        # Sticky until an explicit trust reset.
        update["safety_mode"] = True
        update["emotional_state"] = EmotionalBaseline.protect
    return profile.model_copy(update=update)


def apply_trust_delta(
    profile: RelationshipProfile, delta: int, reason: str | None = None
) -> RelationshipProfile:
    trust_level = clamp_trust(profile.trust_level + delta)
    update = {
        "trust_level": trust_level,
        "stage": (
            profile.stage
            if profile.stage == RelationshipStage.relapse_recovery and trust_level < 40
            else derive_stage(trust_level, profile.event_count)
        ),
        "last_updated": utcnow(),
    }
    if reason == TRUST_RESET_REASON:
        update["safety_mode"] = False
    return profile.model_copy(update=update)


def crossed_milestones(before: int, after: int) -> list[int]:
    """Trust milestones passed on the way up from `before` to `after`."""
    return [m for m in TRUST_MILESTONES if before < m <= after]
