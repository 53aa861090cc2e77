"""Durable coach memory tables used by the SQL persistence adapter.

coach_memory_events: minimized behavioural events (privacy-trimmed payloads).
coach_relationship_profiles: one row per user key (upsert pattern).
coach_trust_curve: append-only trust changes, queried by time range.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from coach_core.models.base import Base, TimestampMixin, generate_uuid, utcnow
from coach_core.schemas.coach_memory import (
    EmotionalBaseline,
    RelationshipStage,
    SafetyClass,
)


class CoachMemoryEventRecord(Base):
    __tablename__ = "coach_memory_events"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    user_key: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    event_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    safety_class: Mapped[SafetyClass] = mapped_column(
        Enum(SafetyClass, native_enum=False),
        nullable=False,
        default=SafetyClass.normal,
    )
    trust_impact: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    source_screen: Mapped[str | None] = mapped_column(String(50), nullable=True)
    explainability_ref: Mapped[str | None] = mapped_column(String(200), nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class RelationshipProfileRecord(TimestampMixin, Base):
    """Durable relationship profile. Never deleted by the coach, only reset."""

    __tablename__ = "coach_relationship_profiles"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    user_key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    stage: Mapped[RelationshipStage] = mapped_column(
        Enum(RelationshipStage, native_enum=False),
        nullable=False,
        default=RelationshipStage.onboarding,
    )
    trust_level: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    emotional_state: Mapped[EmotionalBaseline] = mapped_column(
        Enum(EmotionalBaseline, native_enum=False),
        nullable=False,
        default=EmotionalBaseline.calm,
    )
    resilience: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    autonomy: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    safety_mode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confidence_growth: Mapped[float] = mapped_column(Float, nullable=False, default=0.2)
    confidence_decay: Mapped[float] = mapped_column(Float, nullable=False, default=0.1)
    event_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class TrustCurveEntry(Base):
    """Append-only. No UPDATE at application level; cleared only on memory wipe."""

    __tablename__ = "coach_trust_curve"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    user_key: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    trust_level: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
