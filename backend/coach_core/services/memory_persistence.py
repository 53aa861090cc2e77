"""Memory persistence port: the durable half of coach memory.

The port assumes network-call semantics: any method may be slow or raise.
Callers inside the coach always reach it through the memory facade, which
wraps every call in the memory circuit breaker.

Adapters:
- NullMemoryPersistence: offline defaults, used when no store is configured.
- SqlMemoryPersistence: SQLAlchemy async store keyed by a user key.
"""

from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coach_core.models.coach_memory import (
    CoachMemoryEventRecord,
    RelationshipProfileRecord,
    TrustCurveEntry,
)
from coach_core.schemas.coach_memory import (
    CoachLongTermContext,
    CoachMemoryEvent,
    EmotionalBaseline,
    RelationshipProfile,
    TrustDelta,
)
from coach_core.services.relationship import (
    RECOVERY_EVENTS,
    TRUST_MILESTONES,
    apply_event,
    apply_trust_delta,
    crossed_milestones,
    default_profile,
)

OFFLINE_JOURNEY_SUMMARY = "Coach memory is offline right now. I'm relying on today's data."

PROFILE_FIELDS = (
    "stage",
    "trust_level",
    "emotional_state",
    "resilience",
    "autonomy",
    "safety_mode",
    "confidence_growth",
    "confidence_decay",
    "event_count",
)


class MemoryPersistencePort(ABC):
    """Abstract durable coach memory store."""

    @abstractmethod
    async def persist_event_memory(self, event: CoachMemoryEvent) -> None:
        """Store a (minimized) behavioural event and fold it into the profile."""
        ...

    @abstractmethod
    async def load_long_term_profile(self) -> RelationshipProfile:
        ...

    @abstractmethod
    async def update_trust_curve(self, delta: int, reason: str | None = None) -> None:
        ...

    @abstractmethod
    async def update_emotional_baseline(self, state: EmotionalBaseline) -> None:
        ...

    @abstractmethod
    async def summarize_user_journey(self) -> str:
        ...

    @abstractmethod
    async def get_coach_context_for_response(self) -> CoachLongTermContext:
        ...

    async def clear_coach_memory(self) -> None:
        """Optional. Wipe stored events and trust history."""
        raise NotImplementedError

    async def forget_memory_period(self, start: datetime, end: datetime) -> None:
        """Optional. Forget events that occurred within [start, end]."""
        raise NotImplementedError

    async def load_trust_history(self, since: datetime) -> list[TrustDelta]:
        """Optional. Recorded trust changes since `since`, oldest first."""
        return []


class NullMemoryPersistence(MemoryPersistencePort):
    """Offline store: accepts writes, answers reads with neutral defaults."""

    async def persist_event_memory(self, event: CoachMemoryEvent) -> None:
        return None

    async def load_long_term_profile(self) -> RelationshipProfile:
        return default_profile()

    async def update_trust_curve(self, delta: int, reason: str | None = None) -> None:
        return None

    async def update_emotional_baseline(self, state: EmotionalBaseline) -> None:
        return None

    async def summarize_user_journey(self) -> str:
        return OFFLINE_JOURNEY_SUMMARY

    async def get_coach_context_for_response(self) -> CoachLongTermContext:
        return CoachLongTermContext()

    async def clear_coach_memory(self) -> None:
        return None


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on read; naive values are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlMemoryPersistence(MemoryPersistencePort):
    """SQLAlchemy-backed store. One instance per user key."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], user_key: str):
        self._session_factory = session_factory
        self._user_key = user_key

    async def _get_profile_row(self, db: AsyncSession) -> RelationshipProfileRecord | None:
        result = await db.execute(
            select(RelationshipProfileRecord).where(
                RelationshipProfileRecord.user_key == self._user_key
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _to_profile(row: RelationshipProfileRecord | None) -> RelationshipProfile:
        if row is None:
            return default_profile()
        data = {name: getattr(row, name) for name in PROFILE_FIELDS}
        return RelationshipProfile(last_updated=_as_utc(row.updated_at), **data)

    async def _save_profile(
        self,
        db: AsyncSession,
        row: RelationshipProfileRecord | None,
        profile: RelationshipProfile,
    ) -> RelationshipProfileRecord:
        if row is None:
            row = RelationshipProfileRecord(user_key=self._user_key)
            db.add(row)
        for name in PROFILE_FIELDS:
            setattr(row, name, getattr(profile, name))
        await db.flush()
        return row

    async def persist_event_memory(self, event: CoachMemoryEvent) -> None:
        payload = dict(event.payload)
        source_screen = payload.pop("source_screen", None)
        explainability_ref = payload.pop("explainability_ref", None)
        async with self._session_factory() as db:
            db.add(
                CoachMemoryEventRecord(
                    user_key=self._user_key,
                    event_id=event.id,
                    event_type=event.type,
                    occurred_at=_as_utc(event.timestamp),
                    payload=payload,
                    confidence=event.confidence,
                    safety_class=event.safety_class,
                    trust_impact=event.trust_impact,
                    source_screen=source_screen,
                    explainability_ref=explainability_ref,
                )
            )
            row = await self._get_profile_row(db)
            before = self._to_profile(row)
            after = apply_event(before, event)
            await self._save_profile(db, row, after)
            if event.trust_impact:
                db.add(
                    TrustCurveEntry(
                        user_key=self._user_key,
                        delta=after.trust_level - before.trust_level,
                        trust_level=after.trust_level,
                        reason=f"event:{event.type}",
                    )
                )
            await db.commit()

    async def load_long_term_profile(self) -> RelationshipProfile:
        async with self._session_factory() as db:
            return self._to_profile(await self._get_profile_row(db))

    async def update_trust_curve(self, delta: int, reason: str | None = None) -> None:
        async with self._session_factory() as db:
            row = await self._get_profile_row(db)
            before = self._to_profile(row)
            profile = apply_trust_delta(before, delta, reason)
            await self._save_profile(db, row, profile)
            db.add(
                TrustCurveEntry(
                    user_key=self._user_key,
                    delta=profile.trust_level - before.trust_level,
                    trust_level=profile.trust_level,
                    reason=reason,
                )
            )
            await db.commit()

    async def update_emotional_baseline(self, state: EmotionalBaseline) -> None:
        async with self._session_factory() as db:
            row = await self._get_profile_row(db)
            profile = self._to_profile(row).model_copy(update={"emotional_state": state})
            await self._save_profile(db, row, profile)
            await db.commit()

    async def summarize_user_journey(self) -> str:
        async with self._session_factory() as db:
            profile = self._to_profile(await self._get_profile_row(db))
            count_result = await db.execute(
                select(func.count())
                .select_from(CoachMemoryEventRecord)
                .where(CoachMemoryEventRecord.user_key == self._user_key)
            )
            event_count = count_result.scalar_one()
            recovery_result = await db.execute(
                select(func.count())
                .select_from(CoachMemoryEventRecord)
                .where(
                    CoachMemoryEventRecord.user_key == self._user_key,
                    CoachMemoryEventRecord.event_type.in_(sorted(RECOVERY_EVENTS)),
                )
            )
            recoveries = recovery_result.scalar_one()

        if event_count == 0:
            return "We're just getting started. I'll learn your rhythm as we go."
        stage = profile.stage.value.replace("_", " ")
        return (
            f"We've shared {event_count} moments so far, {recoveries} of them steps back "
            f"into rhythm. We're in the {stage} stage, with trust at {profile.trust_level}/100."
        )

    async def get_coach_context_for_response(self) -> CoachLongTermContext:
        async with self._session_factory() as db:
            events = (
                await db.execute(
                    select(CoachMemoryEventRecord)
                    .where(CoachMemoryEventRecord.user_key == self._user_key)
                    .order_by(CoachMemoryEventRecord.occurred_at.asc())
                )
            ).scalars().all()
            milestones = (
                await db.execute(
                    select(TrustCurveEntry)
                    .where(
                        TrustCurveEntry.user_key == self._user_key,
                        TrustCurveEntry.trust_level >= min(TRUST_MILESTONES),
                    )
                    .order_by(TrustCurveEntry.recorded_at.asc())
                )
            ).scalars().all()

        counts = Counter(e.event_type for e in events)
        goals: list[str] = []
        values: list[str] = []
        for e in events:
            for key, bucket in (("goal", goals), ("value", values)):
                text = e.payload.get(key)
                if isinstance(text, str) and text and text not in bucket:
                    bucket.append(text)

        reached: list[str] = []
        seen: set[int] = set()
        for entry in milestones:
            for milestone in crossed_milestones(entry.trust_level - entry.delta, entry.trust_level):
                if milestone not in seen:
                    seen.add(milestone)
                    reached.append(f"trust_{milestone}@{_as_utc(entry.recorded_at).isoformat()}")

        return CoachLongTermContext(
            goals=goals,
            values=values,
            patterns=[f"frequent:{t}" for t, _ in counts.most_common(3)],
            recovery_history=[
                f"{e.event_type}@{_as_utc(e.occurred_at).isoformat()}"
                for e in events
                if e.event_type in RECOVERY_EVENTS
            ][-10:],
            trust_milestones=reached,
        )

    async def clear_coach_memory(self) -> None:
        async with self._session_factory() as db:
            await db.execute(
                delete(CoachMemoryEventRecord).where(
                    CoachMemoryEventRecord.user_key == self._user_key
                )
            )
            await db.execute(
                delete(TrustCurveEntry).where(TrustCurveEntry.user_key == self._user_key)
            )
            row = await self._get_profile_row(db)
            if row is not None:
                await self._save_profile(db, row, default_profile())
            await db.commit()

    async def forget_memory_period(self, start: datetime, end: datetime) -> None:
        async with self._session_factory() as db:
            await db.execute(
                delete(CoachMemoryEventRecord).where(
                    CoachMemoryEventRecord.user_key == self._user_key,
                    CoachMemoryEventRecord.occurred_at >= _as_utc(start),
                    CoachMemoryEventRecord.occurred_at <= _as_utc(end),
                )
            )
            await db.commit()

    async def load_trust_history(self, since: datetime) -> list[TrustDelta]:
        async with self._session_factory() as db:
            entries = (
                await db.execute(
                    select(TrustCurveEntry)
                    .where(
                        TrustCurveEntry.user_key == self._user_key,
                        TrustCurveEntry.recorded_at >= _as_utc(since),
                    )
                    .order_by(TrustCurveEntry.recorded_at.asc())
                )
            ).scalars().all()
        return [
            TrustDelta(
                timestamp=_as_utc(e.recorded_at),
                delta=e.delta,
                trust_level=e.trust_level,
                reason=e.reason,
            )
            for e in entries
        ]
