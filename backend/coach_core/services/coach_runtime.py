"""Coach runtime: turns behavioural events and screen context into a response.

One evaluation pass per call, no persisted state machine:
1. Best-effort memory write (failures degrade personalization only).
2. Emotional state evaluation (safety pre-empts everything).
3. Template selection + safety guards + entitlement gate.
4. Trust modulation (premium access only).
5. Explainability binding, depth gated by entitlement.

Entry points for screens: handle_user_event, get_coach_overlay,
get_coach_nudge, get_explainability. Nothing else should reach into the
memory facade or its breaker.

The entitlement gate (apply_entitlement_gate) is the single place where
personalization is stripped for users without premium access.
"""

import logging
import re
import time
import uuid
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from coach_core.core.circuit_breaker import CircuitBreaker
from coach_core.core.telemetry import CoachMetric, LoggingTelemetrySink, TelemetrySink
from coach_core.schemas.coach import (
    CoachEmotionalState,
    CoachMode,
    CoachResponse,
    CoachScreen,
    CoachScreenContext,
    CoachSettings,
    CoachUiMode,
    CoachUiSurface,
    NudgeKind,
    SubscriptionState,
)
from coach_core.schemas.coach_memory import (
    CoachEventType,
    CoachExplainabilityBinding,
    CoachMemoryEvent,
    EmotionalBaseline,
    ExperienceContext,
    SafetyClass,
)
from coach_core.services.memory_facade import MemoryFacade

logger = logging.getLogger("potok.coach")


# --- Templates ---


@dataclass(frozen=True)
class ResponseTemplate:
    message: str
    surface: CoachUiSurface


RESPONSE_TEMPLATES: dict[str, ResponseTemplate] = {
    CoachEventType.day_completed.value: ResponseTemplate(
        "You finished the day. That builds trust in yourself.", CoachUiSurface.card
    ),
    CoachEventType.day_skipped.value: ResponseTemplate(
        "No big deal. Let's ease back into the rhythm.", CoachUiSurface.dialog
    ),
    CoachEventType.habit_completed.value: ResponseTemplate(
        "Great step. The rhythm is getting steadier.", CoachUiSurface.card
    ),
    CoachEventType.habit_broken.value: ResponseTemplate(
        "A slip is part of the path. Let's take one small step back.", CoachUiSurface.dialog
    ),
    CoachEventType.streak_recovered.value: ResponseTemplate(
        "You're back in rhythm. That matters more than perfection.", CoachUiSurface.card
    ),
    CoachEventType.plateau_detected.value: ResponseTemplate(
        "A plateau is a phase. Let's set a small focus.", CoachUiSurface.card
    ),
    CoachEventType.regression_detected.value: ResponseTemplate(
        "A step back is part of the path. Let's support recovery.", CoachUiSurface.card
    ),
    CoachEventType.breakthrough.value: ResponseTemplate(
        "That's a breakthrough. Let's lock in the rhythm and build carefully.",
        CoachUiSurface.timeline_comment,
    ),
    CoachEventType.strength_pr.value: ResponseTemplate(
        "A strong step. I can see growth and stability.", CoachUiSurface.timeline_comment
    ),
    CoachEventType.meal_logged.value: ResponseTemplate(
        "Meal logged. That keeps you focused.", CoachUiSurface.nudge
    ),
    CoachEventType.calorie_over_target.value: ResponseTemplate(
        "Calories ran over. No pressure, we'll just adjust.", CoachUiSurface.card
    ),
    CoachEventType.protein_over_target.value: ResponseTemplate(
        "Protein is above target. We'll gently bring it back into balance.", CoachUiSurface.card
    ),
    CoachEventType.fat_over_target.value: ResponseTemplate(
        "Fat is above target. No pressure, we'll even out the day.", CoachUiSurface.card
    ),
    CoachEventType.carb_over_target.value: ResponseTemplate(
        "Carbs are above target. We'll keep the rhythm gently.", CoachUiSurface.card
    ),
    CoachEventType.protein_below_target.value: ResponseTemplate(
        "Protein is low today. Let's add some support for recovery.", CoachUiSurface.card
    ),
    CoachEventType.workout_completed.value: ResponseTemplate(
        "Workout done. A solid contribution to your stability.", CoachUiSurface.card
    ),
    CoachEventType.training_skipped.value: ResponseTemplate(
        "A skipped workout is a signal. Let's support recovery.", CoachUiSurface.card
    ),
    CoachEventType.pain_reported.value: ResponseTemplate(
        "Let's stop and stay safe. The load will be reduced.", CoachUiSurface.banner
    ),
    CoachEventType.fatigue_reported.value: ResponseTemplate(
        "Your energy matters more right now. Let's choose recovery.", CoachUiSurface.banner
    ),
    CoachEventType.progress_improved.value: ResponseTemplate(
        "That's a noticeable step forward. I can see your consistency.",
        CoachUiSurface.timeline_comment,
    ),
    CoachEventType.return_after_pause.value: ResponseTemplate(
        "Glad you're back. Let's start gently.", CoachUiSurface.card
    ),
    CoachEventType.plan_adapted.value: ResponseTemplate(
        "The plan changed to support how you feel and your goal.", CoachUiSurface.card
    ),
}

FALLBACK_TEMPLATE = ResponseTemplate(
    "I'm here. Let's keep moving gently and steadily.", CoachUiSurface.card
)

EMOTIONAL_STATE_TO_MODE: dict[CoachEmotionalState, CoachUiMode] = {
    CoachEmotionalState.neutral: CoachUiMode.support,
    CoachEmotionalState.motivated: CoachUiMode.motivate,
    CoachEmotionalState.cautious: CoachUiMode.protect,
    CoachEmotionalState.fatigued: CoachUiMode.stabilize,
    CoachEmotionalState.discouraged: CoachUiMode.reframe,
    CoachEmotionalState.recovering: CoachUiMode.support,
    CoachEmotionalState.confident: CoachUiMode.celebrate,
    CoachEmotionalState.trust_building: CoachUiMode.guide,
    CoachEmotionalState.trust_repair: CoachUiMode.support,
}

OVERLAY_MESSAGES: dict[CoachScreen, str] = {
    CoachScreen.progress: "I'm here to help you see your path clearly.",
}
DEFAULT_OVERLAY_MESSAGE = "I'm here to support you today."

NUDGE_MESSAGES: dict[NudgeKind, str] = {
    NudgeKind.morning: "A new day. Let's start calm and confident.",
    NudgeKind.evening: "Good work today. Let's wind the day down gently.",
    NudgeKind.recovery: "Recovery is progress too. I'm here.",
    NudgeKind.motivation: "You're moving forward. Let's focus on what matters.",
}

TRUST_REPAIR_SUFFIX = "I'm here even when it's hard. We'll go step by step."
TRUST_AUTONOMY_SUFFIX = "You've shown resilience many times. No pressure."
TRUST_ENCOURAGE_SUFFIX = "I can see you're trying."
TRUST_RITUAL_SUFFIX = "Let's keep the rhythm without pressure."

CRISIS_MESSAGE = (
    "Safety comes first right now. Let's slow down and support recovery. "
    "If things feel heavy, it's okay to reach out for support."
)

# Pressure vocabulary softened in every non-crisis message
SOFTENING: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\bmust\b", re.IGNORECASE), "can"),
    (re.compile(r"\bshould\b", re.IGNORECASE), "could"),
    (re.compile(r"\bguilty\b", re.IGNORECASE), "stretched"),
    (re.compile(r"\bshame\b", re.IGNORECASE), "support"),
)

EXPLAINABILITY_UNAVAILABLE = "explainability_unavailable"
DEFAULT_TRUST_LEVEL = 50
PREMIUM_STATES = frozenset({
    SubscriptionState.premium,
    SubscriptionState.trial,
    SubscriptionState.grace,
})


# --- Entitlement ---


def has_premium_access(state: SubscriptionState | str | None) -> bool:
    if state is None:
        return False
    return SubscriptionState(state) in PREMIUM_STATES


def apply_entitlement_gate(
    response: CoachResponse, subscription_state: SubscriptionState | None
) -> CoachResponse:
    """Strip personalization for users without premium access. Idempotent."""
    if has_premium_access(subscription_state):
        return response
    return response.model_copy(
        update={
            "emotional_state": CoachEmotionalState.neutral,
            "ui_mode": CoachUiMode.support,
            "personalization_basis": None,
            "memory_refs": None,
            "data_sources": None,
            "trust_reason": None,
        }
    )


def describe_trust(trust_level: float | None) -> str | None:
    if trust_level is None:
        return None
    if trust_level < 40:
        return "low"
    if trust_level < 70:
        return "building"
    return "stable"


def describe_trust_reason(trust_level: float | None) -> str | None:
    if trust_level is None:
        return None
    if trust_level < 40:
        return "trust_low_recent_events"
    if trust_level < 70:
        return "trust_building_consistency"
    return "trust_stable_history"


def unavailable_binding(
    decision_id: str, safety_flags: list[str] | None = None
) -> CoachExplainabilityBinding:
    """Minimal trace used whenever the real one cannot be produced."""
    return CoachExplainabilityBinding(
        decision_id=decision_id,
        emotional_state=EmotionalBaseline.calm,
        safety_flags=[*(safety_flags or []), EXPLAINABILITY_UNAVAILABLE],
        explainability_ref=EXPLAINABILITY_UNAVAILABLE,
    )


def reduce_binding_depth(binding: CoachExplainabilityBinding) -> CoachExplainabilityBinding:
    return binding.model_copy(update={"memory_refs": [], "trust_history": [], "pattern_matches": []})


# --- Intervention policy ---


@dataclass(frozen=True)
class InterventionPolicy:
    mode: CoachMode = CoachMode.support
    daily_nudge_limit: int = 3
    min_interval_minutes: int = 180
    cooldown_after_ignore_hours: int = 6
    ignore_threshold: int = 3
    silent: bool = False
    respect_user_silence: bool = True

    def allows_event(self, event: CoachMemoryEvent) -> bool:
        if self.mode == CoachMode.off:
            return False
        if self.mode == CoachMode.on_request:
            return event.payload.get("source") == "user_request"
        if self.mode == CoachMode.risk_only:
            return event.safety_class != SafetyClass.normal
        return True

    def allows_overlay_context(self, context: CoachScreenContext) -> bool:
        if self.silent:
            return False
        if self.mode in (CoachMode.off, CoachMode.on_request):
            return False
        if self.mode == CoachMode.risk_only:
            return (
                bool(context.safety_flags)
                or (context.fatigue_level or 0) > 0.6
                or (context.relapse_risk or 0) > 0.6
            )
        return True


class NudgeLedger:
    """In-process record of shown and ignored nudges."""

    def __init__(self) -> None:
        self._counts: dict[date, int] = {}
        self._last_shown_at: datetime | None = None
        self._ignore_count = 0
        self._silence_until: datetime | None = None

    @property
    def ignore_count(self) -> int:
        return self._ignore_count

    @property
    def silence_until(self) -> datetime | None:
        return self._silence_until

    def allows(self, policy: InterventionPolicy, now: datetime) -> bool:
        if self._counts.get(now.date(), 0) >= policy.daily_nudge_limit:
            return False
        if self._last_shown_at is not None:
            if now - self._last_shown_at < timedelta(minutes=policy.min_interval_minutes):
                return False
        if self._silence_until is not None and now < self._silence_until:
            return False
        return True

    def register(self, policy: InterventionPolicy, now: datetime) -> None:
        today = now.date()
        self._counts = {today: self._counts.get(today, 0) + 1}
        self._last_shown_at = now
        if (
            policy.respect_user_silence
            and policy.cooldown_after_ignore_hours > 0
            and self._ignore_count >= policy.ignore_threshold
        ):
            self._silence_until = now + timedelta(hours=policy.cooldown_after_ignore_hours)

    def record_ignored(self) -> None:
        self._ignore_count += 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


# --- Runtime ---


class CoachRuntime:
    def __init__(
        self,
        facade: MemoryFacade,
        *,
        telemetry: TelemetrySink | None = None,
        settings: CoachSettings | None = None,
        policy: InterventionPolicy | None = None,
        runtime_breaker: CircuitBreaker | None = None,
        explainability_breaker: CircuitBreaker | None = None,
        ledger: NudgeLedger | None = None,
        dedupe_capacity: int = 500,
        now: Callable[[], datetime] = _utcnow,
    ):
        self._facade = facade
        self._telemetry = telemetry or LoggingTelemetrySink()
        self._settings = settings or CoachSettings()
        self._policy_defaults = policy or InterventionPolicy()
        self._runtime_breaker = runtime_breaker or CircuitBreaker(
            "coach_runtime", failure_threshold=2
        )
        self._explainability_breaker = explainability_breaker or CircuitBreaker(
            "coach_explainability", failure_threshold=2
        )
        self._ledger = ledger or NudgeLedger()
        self._dedupe_keys: OrderedDict[str, None] = OrderedDict()
        self._dedupe_capacity = dedupe_capacity
        self._now = now

    # --- settings & policy ---

    @property
    def settings(self) -> CoachSettings:
        return self._settings

    def update_settings(self, settings: CoachSettings) -> CoachSettings:
        self._settings = settings
        logger.info(
            "coach_settings_updated enabled=%s mode=%s",
            settings.coach_enabled,
            settings.coach_mode.value,
        )
        return settings

    def get_intervention_policy(self) -> InterventionPolicy:
        mode = self._settings.coach_mode if self._settings.coach_enabled else CoachMode.off
        base = self._policy_defaults
        return InterventionPolicy(
            mode=mode,
            daily_nudge_limit=base.daily_nudge_limit,
            min_interval_minutes=base.min_interval_minutes,
            cooldown_after_ignore_hours=base.cooldown_after_ignore_hours,
            ignore_threshold=base.ignore_threshold,
            silent=base.silent,
            respect_user_silence=base.respect_user_silence,
        )

    def record_nudge_ignored(self) -> None:
        self._ledger.record_ignored()
        self._telemetry.increment(CoachMetric.coach_user_ignored)

    # --- entry points ---

    async def handle_user_event(
        self, event: CoachMemoryEvent, screen_context: CoachScreenContext
    ) -> CoachResponse | None:
        """Full coaching pass for one event. None when the policy suppresses it."""
        policy = self.get_intervention_policy()
        if not policy.allows_event(event):
            return None
        dedupe_key = self._dedupe_key(event, screen_context)
        if dedupe_key in self._dedupe_keys:
            return None
        if event.payload.get("silent"):
            return None
        if not self._runtime_breaker.can_request():
            return None

        self._remember(dedupe_key)
        try:
            return await self._respond_to_event(event, screen_context)
        finally:
            self._runtime_breaker.release_trial()

    async def _respond_to_event(
        self, event: CoachMemoryEvent, screen_context: CoachScreenContext
    ) -> CoachResponse:
        started = time.perf_counter()
        if event.id is None:
            event = event.model_copy(update={"id": str(uuid.uuid4())})
        if event.payload.get("source") == "user_request":
            self._telemetry.increment(CoachMetric.coach_user_requested)

        memory_available = True
        try:
            await self._facade.record_experience(
                event, ExperienceContext(source_screen=screen_context.screen.value)
            )
        except Exception as exc:
            logger.warning("record_experience_failed event=%s error=%r", event.type, exc)
            memory_available = False

        try:
            emotional_state = self.evaluate_emotional_state(screen_context, event)
            response = self.generate_coach_response(event, screen_context, emotional_state)
            if not memory_available:
                response = response.model_copy(update={"personalization_basis": None})
            if has_premium_access(screen_context.subscription_state):
                response = self.apply_trust_modulation(
                    response, self._trust_level(screen_context)
                )
            decision_id = self.decision_id_for(event)
            response, binding = await self.attach_explainability(
                response, decision_id, screen_context
            )
        except Exception:
            self._runtime_breaker.record_failure()
            self._telemetry.increment(CoachMetric.coach_error, 1, {"event": event.type})
            raise

        self._telemetry.track_timing(
            CoachMetric.coach_response_time,
            _elapsed_ms(started),
            {"screen": screen_context.screen.value, "event": event.type},
        )
        self._telemetry.increment(CoachMetric.coach_response_generated, 1, {"event": event.type})
        self._runtime_breaker.record_success()
        return response.model_copy(update={"decision_id": decision_id, "explainability": binding})

    async def get_coach_overlay(
        self, screen_context: CoachScreenContext
    ) -> CoachResponse | None:
        """Ambient message for a screen, without a triggering event."""
        policy = self.get_intervention_policy()
        now = self._now()
        if not policy.allows_overlay_context(screen_context):
            return None
        if not self._ledger.allows(policy, now):
            return None
        if not self._runtime_breaker.can_request():
            return None

        started = time.perf_counter()
        try:
            emotional_state = self.evaluate_emotional_state(screen_context)
            response = CoachResponse(
                decision_id=f"overlay:{screen_context.screen.value}:{int(now.timestamp() * 1000)}",
                coach_message=OVERLAY_MESSAGES.get(screen_context.screen, DEFAULT_OVERLAY_MESSAGE),
                emotional_state=emotional_state,
                ui_surface=CoachUiSurface.nudge,
                ui_mode=EMOTIONAL_STATE_TO_MODE[emotional_state],
                confidence=screen_context.confidence_level,
                safety_flags=screen_context.safety_flags,
                trust_state=describe_trust(screen_context.trust_level),
                trust_reason=describe_trust_reason(screen_context.trust_level),
                safety_reason="safety_flags" if screen_context.safety_flags else None,
            )
            response = apply_entitlement_gate(response, screen_context.subscription_state)
            if has_premium_access(screen_context.subscription_state):
                response = self.apply_trust_modulation(
                    response, self._trust_level(screen_context)
                )
        except Exception:
            self._runtime_breaker.record_failure()
            self._telemetry.increment(CoachMetric.coach_error, 1, {"source": "overlay"})
            raise
        finally:
            self._runtime_breaker.release_trial()

        self._ledger.register(policy, now)
        self._runtime_breaker.record_success()
        self._telemetry.track_timing(
            CoachMetric.coach_overlay_time,
            _elapsed_ms(started),
            {"screen": screen_context.screen.value},
        )
        self._telemetry.increment(
            CoachMetric.coach_overlay_shown, 1, {"screen": screen_context.screen.value}
        )
        return response

    def get_coach_nudge(self, kind: NudgeKind) -> CoachResponse:
        recovery = kind == NudgeKind.recovery
        return CoachResponse(
            decision_id=f"nudge:{kind.value}:{int(self._now().timestamp() * 1000)}",
            coach_message=NUDGE_MESSAGES[kind],
            emotional_state=(
                CoachEmotionalState.recovering if recovery else CoachEmotionalState.motivated
            ),
            ui_surface=CoachUiSurface.nudge,
            ui_mode=CoachUiMode.support if recovery else CoachUiMode.motivate,
        )

    async def get_explainability(
        self, decision_id: str, subscription_state: SubscriptionState | None = None
    ) -> CoachExplainabilityBinding:
        """Trace for the explainability drawer. Always renders; depth depends on tier."""
        self._telemetry.increment(CoachMetric.coach_explainability_opened)
        binding = await self._load_trace(decision_id)
        if binding is None:
            return unavailable_binding(decision_id)
        if not has_premium_access(subscription_state):
            return reduce_binding_depth(binding)
        return binding

    # --- administrative ---

    async def get_journey_narrative(self) -> str:
        return await self._facade.get_long_term_narrative()

    async def clear_history(self) -> None:
        await self._facade.clear_coach_history()

    async def forget_period(self, start: datetime, end: datetime) -> None:
        await self._facade.forget_memory_period(start, end)

    async def reset_trust(self) -> None:
        await self._facade.clear_trust_model()

    # --- evaluation steps ---

    def evaluate_emotional_state(
        self, context: CoachScreenContext, event: CoachMemoryEvent | None = None
    ) -> CoachEmotionalState:
        if (event is not None and event.safety_class != SafetyClass.normal) or context.safety_flags:
            return CoachEmotionalState.cautious
        if context.fatigue_level is not None and context.fatigue_level > 0.7:
            return CoachEmotionalState.fatigued
        if context.relapse_risk is not None and context.relapse_risk > 0.6:
            return CoachEmotionalState.recovering
        if context.trust_level is not None and context.trust_level < 40:
            return CoachEmotionalState.trust_repair
        if context.trust_level is not None and context.trust_level >= 70:
            return CoachEmotionalState.confident
        if context.streak is not None and context.streak >= 5:
            return CoachEmotionalState.motivated
        return CoachEmotionalState.neutral

    def generate_coach_response(
        self,
        event: CoachMemoryEvent,
        context: CoachScreenContext,
        emotional_state: CoachEmotionalState,
    ) -> CoachResponse:
        template = RESPONSE_TEMPLATES.get(event.type, FALLBACK_TEMPLATE)
        response = CoachResponse(
            decision_id=self.decision_id_for(event),
            coach_message=template.message,
            emotional_state=emotional_state,
            ui_surface=template.surface,
            ui_mode=EMOTIONAL_STATE_TO_MODE[emotional_state],
            confidence=event.confidence,
            safety_flags=context.safety_flags,
            trust_state=describe_trust(context.trust_level),
            trust_reason=describe_trust_reason(context.trust_level),
            safety_reason="safety_flags" if context.safety_flags else None,
            personalization_basis="history_context",
        )
        response = self._apply_safety_guards(response, context, event)
        return apply_entitlement_gate(response, context.subscription_state)

    def apply_trust_modulation(self, response: CoachResponse, trust_level: float) -> CoachResponse:
        if trust_level < 35:
            return response.model_copy(
                update={
                    "coach_message": f"{response.coach_message} {TRUST_REPAIR_SUFFIX}",
                    "trust_state": "trust_repair",
                }
            )
        if trust_level > 75:
            return response.model_copy(
                update={
                    "coach_message": f"{response.coach_message} {TRUST_AUTONOMY_SUFFIX}",
                    "trust_state": "stable",
                }
            )
        if trust_level < 60:
            suffix = TRUST_ENCOURAGE_SUFFIX
        else:
            suffix = TRUST_RITUAL_SUFFIX
        return response.model_copy(
            update={"coach_message": f"{response.coach_message} {suffix}"}
        )

    async def attach_explainability(
        self,
        response: CoachResponse,
        decision_id: str,
        context: CoachScreenContext,
    ) -> tuple[CoachResponse, CoachExplainabilityBinding]:
        binding = await self._load_trace(decision_id)
        if binding is None:
            return response, unavailable_binding(decision_id, context.safety_flags)
        if not has_premium_access(context.subscription_state):
            self._telemetry.increment(CoachMetric.coach_memory_miss, 1, {"reason": "entitlement"})
            return response, reduce_binding_depth(binding)

        if binding.memory_refs:
            self._telemetry.increment(
                CoachMetric.coach_memory_hit, len(binding.memory_refs), {"decision": decision_id}
            )
        response = response.model_copy(
            update={
                "memory_refs": [ref.summary for ref in binding.memory_refs],
                "data_sources": [ref.ref for ref in binding.memory_refs],
            }
        )
        return response, binding

    @staticmethod
    def decision_id_for(event: CoachMemoryEvent) -> str:
        return f"{event.type}:{event.timestamp.isoformat()}"

    # --- internals ---

    async def _load_trace(self, decision_id: str) -> CoachExplainabilityBinding | None:
        if not self._explainability_breaker.can_request():
            return None
        started = time.perf_counter()
        try:
            binding = await self._facade.get_explainable_reasoning_trace(decision_id)
        except Exception as exc:
            logger.warning("explainability_unavailable decision=%s error=%r", decision_id, exc)
            self._explainability_breaker.record_failure()
            return None
        finally:
            self._explainability_breaker.release_trial()
        self._telemetry.track_timing(
            CoachMetric.explainability_latency, _elapsed_ms(started), {"decision": decision_id}
        )
        self._explainability_breaker.record_success()
        return binding

    def _apply_safety_guards(
        self,
        response: CoachResponse,
        context: CoachScreenContext,
        event: CoachMemoryEvent,
    ) -> CoachResponse:
        distress = event.payload.get("emotional_signal") == "distress" or "distress" in (
            context.safety_flags or []
        )
        if event.safety_class == SafetyClass.medical_risk or distress:
            return response.model_copy(
                update={
                    "coach_message": CRISIS_MESSAGE,
                    "emotional_state": CoachEmotionalState.cautious,
                    "ui_mode": CoachUiMode.protect,
                    "ui_surface": CoachUiSurface.banner,
                    "safety_reason": "crisis_mode",
                }
            )
        message = response.coach_message
        for pattern, replacement in SOFTENING:
            message = pattern.sub(replacement, message)
        return response.model_copy(update={"coach_message": message})

    @staticmethod
    def _trust_level(context: CoachScreenContext) -> float:
        return DEFAULT_TRUST_LEVEL if context.trust_level is None else context.trust_level

    def _dedupe_key(self, event: CoachMemoryEvent, context: CoachScreenContext) -> str:
        payload = event.payload
        source = payload.get("source")
        if not isinstance(source, str):
            source = context.screen.value
        day = next(
            (payload[key] for key in ("date", "day", "period") if isinstance(payload.get(key), str)),
            None,
        )
        if day is None:
            ts = event.timestamp
            day = (ts.astimezone(timezone.utc) if ts.tzinfo else ts).date().isoformat()
        return f"{event.type}:{day}:{source}"

    def _remember(self, key: str) -> None:
        self._dedupe_keys[key] = None
        while len(self._dedupe_keys) > self._dedupe_capacity:
            self._dedupe_keys.popitem(last=False)
