import enum

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from coach_core.schemas.coach_memory import CoachExplainabilityBinding, CoachMemoryEvent


class CoachScreen(str, enum.Enum):
    today = "Today"
    progress = "Progress"
    habits = "Habits"
    program = "Program"
    paywall = "Paywall"


class UserMode(str, enum.Enum):
    manual = "Manual"
    follow_plan = "Follow Plan"


class SubscriptionState(str, enum.Enum):
    free = "Free"
    premium = "Premium"
    trial = "Trial"
    grace = "Grace"
    expired = "Expired"


class CoachEmotionalState(str, enum.Enum):
    neutral = "neutral"
    motivated = "motivated"
    cautious = "cautious"
    fatigued = "fatigued"
    discouraged = "discouraged"
    recovering = "recovering"
    confident = "confident"
    trust_building = "trust_building"
    trust_repair = "trust_repair"


class CoachUiSurface(str, enum.Enum):
    card = "card"
    nudge = "nudge"
    dialog = "dialog"
    banner = "banner"
    timeline_comment = "timeline_comment"


class CoachUiMode(str, enum.Enum):
    support = "support"
    motivate = "motivate"
    stabilize = "stabilize"
    protect = "protect"
    celebrate = "celebrate"
    guide = "guide"
    reframe = "reframe"


class NudgeKind(str, enum.Enum):
    morning = "morning"
    evening = "evening"
    recovery = "recovery"
    motivation = "motivation"


class CoachMode(str, enum.Enum):
    support = "support"
    on_request = "on_request"
    risk_only = "risk_only"
    off = "off"


class CoachScreenContext(BaseModel):
    """Read-only snapshot supplied by the calling screen on every request."""

    screen: CoachScreen
    user_mode: UserMode = UserMode.manual
    subscription_state: SubscriptionState = SubscriptionState.free
    trust_level: float | None = Field(None, ge=0, le=100)
    confidence_level: float | None = None
    fatigue_level: float | None = None
    relapse_risk: float | None = None
    motivation_level: float | None = None
    safety_flags: list[str] | None = None
    adherence: float | None = None
    streak: int | None = None
    time_gap_days: int | None = None

    model_config = {"alias_generator": to_camel, "populate_by_name": True, "frozen": True}


class CoachResponse(BaseModel):
    decision_id: str | None = None
    coach_message: str
    emotional_state: CoachEmotionalState
    ui_surface: CoachUiSurface
    ui_mode: CoachUiMode
    reasoning: str | None = None
    memory_refs: list[str] | None = None
    trust_state: str | None = None
    trust_reason: str | None = None
    safety_flags: list[str] | None = None
    safety_reason: str | None = None
    confidence: float | None = None
    personalization_basis: str | None = None
    data_sources: list[str] | None = None
    explainability: CoachExplainabilityBinding | None = None


class CoachSettings(BaseModel):
    coach_enabled: bool = True
    coach_mode: CoachMode = CoachMode.support


# --- HTTP request bodies ---


class CoachEventRequest(BaseModel):
    event: CoachMemoryEvent
    context: CoachScreenContext


class TrustClassifyRequest(BaseModel):
    error_message: str | None = Field(
        None, description="Error text raised by the calling feature, if any"
    )
    confidence: float | None = None
    safety_flags: list[str] | None = None
