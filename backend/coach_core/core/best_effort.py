"""Best-effort execution for non-load-bearing async work."""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from coach_core.core.telemetry import CoachMetric, TelemetrySink

logger = logging.getLogger("potok.coach")

T = TypeVar("T")


async def best_effort(
    operation: Callable[[], Awaitable[T]],
    *,
    default: T,
    label: str,
    telemetry: TelemetrySink | None = None,
) -> T:
    """Run `operation`; on any exception log it, count a fallback and return `default`."""
    try:
        return await operation()
    except Exception as exc:
        logger.warning("best_effort_fallback label=%s error=%r", label, exc)
        if telemetry is not None:
            telemetry.increment(CoachMetric.coach_fallback_used, 1, {"label": label})
        return default
