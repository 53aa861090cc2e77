"""Coach memory data types: behavioural events, relationship profile, traces.

Events are immutable facts produced at the screen layer. The relationship
profile is the mutable single-owner state evolved from those events.
"""

import enum
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CoachEventType(str, enum.Enum):
    """Behavioural tags with a registered response template.

    Events may carry other tags; those fall back to the generic template.
    """

    day_completed = "DayCompleted"
    day_skipped = "DaySkipped"
    habit_completed = "HabitCompleted"
    habit_broken = "HabitBroken"
    streak_recovered = "StreakRecovered"
    plateau_detected = "PlateauDetected"
    regression_detected = "RegressionDetected"
    breakthrough = "Breakthrough"
    strength_pr = "StrengthPR"
    meal_logged = "MealLogged"
    calorie_over_target = "CalorieOverTarget"
    protein_over_target = "ProteinOverTarget"
    fat_over_target = "FatOverTarget"
    carb_over_target = "CarbOverTarget"
    protein_below_target = "ProteinBelowTarget"
    workout_completed = "WorkoutCompleted"
    training_skipped = "TrainingSkipped"
    pain_reported = "PainReported"
    fatigue_reported = "FatigueReported"
    progress_improved = "ProgressImproved"
    return_after_pause = "ReturnAfterPause"
    plan_adapted = "PlanAdapted"


class SafetyClass(str, enum.Enum):
    normal = "normal"
    caution = "caution"
    medical_risk = "medical_risk"


class RelationshipStage(str, enum.Enum):
    onboarding = "onboarding"
    trust_building = "trust_building"
    stable_partnership = "stable_partnership"
    relapse_recovery = "relapse_recovery"
    long_term_companion = "long_term_companion"


class EmotionalBaseline(str, enum.Enum):
    """Emotional state stored on the relationship profile."""

    calm = "calm"
    support = "support"
    motivate = "motivate"
    stabilize = "stabilize"
    protect = "protect"
    celebrate = "celebrate"
    guide = "guide"
    reframe = "reframe"


class MemoryLayer(str, enum.Enum):
    short = "short"
    mid = "mid"
    long = "long"
    safety = "safety"
    trust = "trust"


class CoachMemoryEvent(BaseModel):
    """Immutable behavioural fact. `payload` stays an open mapping; known keys
    are `source`, `date`/`day`/`period`, `silent`, `emotional_signal`, `goal`
    and `value`."""

    id: str | None = None
    type: str
    timestamp: datetime
    payload: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(1.0, ge=0.0, le=1.0)
    safety_class: SafetyClass = Field(SafetyClass.normal, alias="safetyClass")
    trust_impact: int = Field(0, ge=-2, le=2, alias="trustImpact")

    model_config = {"frozen": True, "populate_by_name": True}


class RelationshipProfile(BaseModel):
    stage: RelationshipStage = RelationshipStage.onboarding
    trust_level: int = Field(50, ge=0, le=100, alias="trustLevel")
    emotional_state: EmotionalBaseline = Field(EmotionalBaseline.calm, alias="emotionalState")
    resilience: float = Field(0.5, ge=0.0, le=1.0)
    autonomy: float = Field(0.5, ge=0.0, le=1.0)
    safety_mode: bool = Field(False, alias="safetyMode")
    confidence_growth: float = Field(0.2, alias="confidenceGrowth")
    confidence_decay: float = Field(0.1, alias="confidenceDecay")
    event_count: int = Field(0, alias="eventCount")
    last_updated: datetime = Field(default_factory=utcnow, alias="lastUpdated")

    model_config = {"populate_by_name": True}


class CoachLongTermContext(BaseModel):
    goals: list[str] = Field(default_factory=list)
    values: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)
    recovery_history: list[str] = Field(default_factory=list, alias="recoveryHistory")
    trust_milestones: list[str] = Field(default_factory=list, alias="trustMilestones")

    model_config = {"populate_by_name": True}


class CoachMemoryTrace(BaseModel):
    ref: str
    summary: str
    occurred_at: datetime | None = Field(None, alias="occurredAt")
    layer: MemoryLayer | None = None
    tags: list[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class TrustDelta(BaseModel):
    timestamp: datetime
    delta: int
    trust_level: int | None = Field(None, alias="trustLevel")
    reason: str | None = None

    model_config = {"populate_by_name": True}


class CoachExplainabilityBinding(BaseModel):
    """The auditable "why" behind a coaching decision."""

    decision_id: str = Field(..., alias="decisionId")
    memory_refs: list[CoachMemoryTrace] = Field(default_factory=list)
    trust_history: list[TrustDelta] = Field(default_factory=list)
    emotional_state: EmotionalBaseline = EmotionalBaseline.calm
    safety_flags: list[str] = Field(default_factory=list)
    pattern_matches: list[str] = Field(default_factory=list)
    explainability_ref: str | None = Field(None, alias="explainabilityRef")

    model_config = {"populate_by_name": True}


class ExperienceContext(BaseModel):
    source_screen: str
    explainability_ref: str | None = None


class TrustSignal(BaseModel):
    delta: int
    reason: str | None = None
