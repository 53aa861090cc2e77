"""In-process memory service: the fast, volatile half of coach memory.

Holds one relationship profile per process. Always answers with a
well-formed profile, even before the first write. Not transactionally tied
to the durable store; concurrent writers may interleave.
"""

from collections import Counter, deque

from coach_core.schemas.coach_memory import (
    CoachLongTermContext,
    CoachMemoryEvent,
    EmotionalBaseline,
    RelationshipProfile,
)
from coach_core.services.relationship import (
    RECOVERY_EVENTS,
    apply_event,
    apply_trust_delta,
    crossed_milestones,
    default_profile,
)

RECENT_EVENT_LIMIT = 50
HISTORY_LIMIT = 10
TOP_PATTERNS = 3


class InProcessMemoryService:
    def __init__(self) -> None:
        self._profile: RelationshipProfile | None = None
        self._recent: deque[CoachMemoryEvent] = deque(maxlen=RECENT_EVENT_LIMIT)
        self._type_counts: Counter[str] = Counter()
        self._recovery_history: deque[str] = deque(maxlen=HISTORY_LIMIT)
        self._trust_milestones: list[str] = []
        self._goals: list[str] = []
        self._values: list[str] = []

    def _current(self) -> RelationshipProfile:
        if self._profile is None:
            self._profile = default_profile()
        return self._profile

    async def record_event(self, event: CoachMemoryEvent) -> None:
        before = self._current()
        after = apply_event(before, event)
        self._profile = after

        self._recent.append(event)
        self._type_counts[event.type] += 1
        if event.type in RECOVERY_EVENTS:
            self._recovery_history.append(f"{event.type}@{event.timestamp.isoformat()}")
        self._note_milestones(before.trust_level, after.trust_level, event.timestamp.isoformat())
        self._collect_text(event.payload.get("goal"), self._goals)
        self._collect_text(event.payload.get("value"), self._values)

    async def update_emotional_state(self, state: EmotionalBaseline) -> None:
        self._profile = self._current().model_copy(update={"emotional_state": state})

    async def update_trust(self, delta: int, reason: str | None = None) -> None:
        before = self._current()
        after = apply_trust_delta(before, delta, reason)
        self._profile = after
        self._note_milestones(before.trust_level, after.trust_level, after.last_updated.isoformat())

    async def get_relationship_profile(self) -> RelationshipProfile:
        return self._current().model_copy()

    async def get_long_term_context(self) -> CoachLongTermContext:
        return CoachLongTermContext(
            goals=list(self._goals),
            values=list(self._values),
            patterns=[f"frequent:{t}" for t, _ in self._type_counts.most_common(TOP_PATTERNS)],
            recovery_history=list(self._recovery_history),
            trust_milestones=list(self._trust_milestones),
        )

    def recent_events(self) -> list[CoachMemoryEvent]:
        return list(self._recent)

    def _note_milestones(self, before: int, after: int, at: str) -> None:
        for milestone in crossed_milestones(before, after):
            self._trust_milestones.append(f"trust_{milestone}@{at}")

    @staticmethod
    def _collect_text(value, bucket: list[str]) -> None:
        if isinstance(value, str) and value and value not in bucket:
            bucket.append(value)
