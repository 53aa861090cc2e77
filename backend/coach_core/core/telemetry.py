"""Coach telemetry: timings against fixed budgets, plus counters.

Sinks never raise and never block the caller. Exceeding a budget is a
signal (a warning record), not an error.
"""

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("potok.telemetry")


class CoachMetric(str, enum.Enum):
    # Timings
    coach_response_time = "coach_response_time"
    coach_overlay_time = "coach_overlay_time"
    explainability_latency = "explainability_latency"
    memory_fetch_time = "memory_fetch_time"
    trust_update_time = "trust_update_time"
    # Counters
    coach_overlay_shown = "coach_overlay_shown"
    coach_response_generated = "coach_response_generated"
    coach_memory_hit = "coach_memory_hit"
    coach_memory_miss = "coach_memory_miss"
    coach_explainability_opened = "coach_explainability_opened"
    coach_user_ignored = "coach_user_ignored"
    coach_user_requested = "coach_user_requested"
    coach_error = "coach_error"
    coach_fallback_used = "coach_fallback_used"


DEFAULT_BUDGETS_MS: dict[str, int] = {
    CoachMetric.coach_response_time.value: 300,
    CoachMetric.coach_overlay_time.value: 50,
    CoachMetric.memory_fetch_time.value: 150,
    CoachMetric.explainability_latency.value: 200,
    CoachMetric.trust_update_time.value: 120,
}

_PRIVATE_KEY_HINTS = ("user", "email", "phone", "name")


def sanitize_meta(meta: dict[str, Any] | None) -> dict[str, Any]:
    """Drop metadata keys that may carry personal data."""
    if not meta:
        return {}
    return {
        key: value
        for key, value in meta.items()
        if not any(hint in str(key).lower() for hint in _PRIVATE_KEY_HINTS)
    }


class TelemetrySink(ABC):
    """Fire-and-forget metrics sink."""

    def __init__(self, budgets_ms: dict[str, int] | None = None):
        self.budgets_ms = dict(DEFAULT_BUDGETS_MS if budgets_ms is None else budgets_ms)

    def track_timing(
        self, name: CoachMetric | str, duration_ms: float, meta: dict[str, Any] | None = None
    ) -> None:
        try:
            metric = _metric_name(name)
            payload = sanitize_meta(meta)
            budget = self.budgets_ms.get(metric)
            if budget is not None and duration_ms > budget:
                self._emit_budget_exceeded(metric, duration_ms, budget, payload)
            else:
                self._emit_timing(metric, duration_ms, payload)
        except Exception:
            logger.debug("telemetry_dropped metric=%s", name, exc_info=True)

    def increment(
        self, name: CoachMetric | str, value: int = 1, meta: dict[str, Any] | None = None
    ) -> None:
        try:
            self._emit_counter(_metric_name(name), value, sanitize_meta(meta))
        except Exception:
            logger.debug("telemetry_dropped metric=%s", name, exc_info=True)

    @abstractmethod
    def _emit_timing(self, name: str, duration_ms: float, meta: dict[str, Any]) -> None:
        ...

    @abstractmethod
    def _emit_budget_exceeded(
        self, name: str, duration_ms: float, budget_ms: int, meta: dict[str, Any]
    ) -> None:
        ...

    @abstractmethod
    def _emit_counter(self, name: str, value: int, meta: dict[str, Any]) -> None:
        ...


class LoggingTelemetrySink(TelemetrySink):
    """Writes metrics to the `potok.telemetry` logger."""

    def _emit_timing(self, name, duration_ms, meta):
        logger.debug("timing metric=%s duration_ms=%.1f meta=%s", name, duration_ms, meta)

    def _emit_budget_exceeded(self, name, duration_ms, budget_ms, meta):
        logger.warning(
            "budget_exceeded metric=%s duration_ms=%.1f budget_ms=%d meta=%s",
            name,
            duration_ms,
            budget_ms,
            meta,
        )

    def _emit_counter(self, name, value, meta):
        logger.debug("counter metric=%s value=%d meta=%s", name, value, meta)


@dataclass
class TelemetryRecord:
    kind: str  # "timing", "budget_exceeded" or "counter"
    name: str
    value: float
    meta: dict[str, Any] = field(default_factory=dict)
    budget_ms: int | None = None


class InMemoryTelemetrySink(TelemetrySink):
    """Keeps every record in a list. Used by tests and local tooling."""

    def __init__(self, budgets_ms: dict[str, int] | None = None):
        super().__init__(budgets_ms)
        self.records: list[TelemetryRecord] = []

    def _emit_timing(self, name, duration_ms, meta):
        self.records.append(TelemetryRecord("timing", name, duration_ms, meta))

    def _emit_budget_exceeded(self, name, duration_ms, budget_ms, meta):
        self.records.append(
            TelemetryRecord("budget_exceeded", name, duration_ms, meta, budget_ms=budget_ms)
        )

    def _emit_counter(self, name, value, meta):
        self.records.append(TelemetryRecord("counter", name, value, meta))

    def named(self, name: CoachMetric | str) -> list[TelemetryRecord]:
        metric = _metric_name(name)
        return [r for r in self.records if r.name == metric]

    def counter_total(self, name: CoachMetric | str) -> float:
        return sum(r.value for r in self.named(name) if r.kind == "counter")


def _metric_name(name: CoachMetric | str) -> str:
    return name.value if isinstance(name, CoachMetric) else str(name)
