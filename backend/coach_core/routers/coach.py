"""Coach routes: the UI/runtime adapter consumed by screens.

Events, ambient overlays, fixed nudges and the explainability drawer, plus
trust & safety classification, coach settings and memory administration.
Suppressed coaching (policy, dedupe, silence) is returned as null.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from coach_core.dependencies import get_runtime
from coach_core.schemas.coach import (
    CoachEventRequest,
    CoachResponse,
    CoachScreenContext,
    CoachSettings,
    NudgeKind,
    SubscriptionState,
    TrustClassifyRequest,
)
from coach_core.schemas.coach_memory import CoachExplainabilityBinding
from coach_core.services import trust_safety_service
from coach_core.services.coach_runtime import CoachRuntime

router = APIRouter(prefix="/coach", tags=["coach"])

VALID_NUDGES = {k.value for k in NudgeKind}


@router.post("/events", response_model=CoachResponse | None, response_model_exclude_none=True)
async def handle_event(
    body: CoachEventRequest,
    runtime: CoachRuntime = Depends(get_runtime),
):
    """Coach response to a behavioural event, or null when suppressed."""
    return await runtime.handle_user_event(body.event, body.context)


@router.post("/overlay", response_model=CoachResponse | None, response_model_exclude_none=True)
async def overlay(
    body: CoachScreenContext,
    runtime: CoachRuntime = Depends(get_runtime),
):
    """Ambient coach message for a screen, or null when nudges are limited."""
    return await runtime.get_coach_overlay(body)


@router.get("/nudges/{kind}", response_model=CoachResponse, response_model_exclude_none=True)
async def nudge(kind: str, runtime: CoachRuntime = Depends(get_runtime)):
    if kind not in VALID_NUDGES:
        raise HTTPException(
            status_code=400,
            detail=f"kind must be one of: {', '.join(sorted(VALID_NUDGES))}",
        )
    return runtime.get_coach_nudge(NudgeKind(kind))


@router.post("/nudges/ignored", status_code=204)
async def nudge_ignored(runtime: CoachRuntime = Depends(get_runtime)):
    """The user dismissed a nudge without acting on it."""
    runtime.record_nudge_ignored()
    return Response(status_code=204)


@router.get("/explainability", response_model=CoachExplainabilityBinding)
async def explainability(
    decision_id: str = Query(..., min_length=1),
    subscription_state: SubscriptionState = SubscriptionState.free,
    runtime: CoachRuntime = Depends(get_runtime),
):
    """Explainability trace; reduced depth without premium access."""
    return await runtime.get_explainability(decision_id, subscription_state)


@router.post("/trust-safety/classify")
async def classify_trust(body: TrustClassifyRequest):
    decision = trust_safety_service.classify(
        body.error_message,
        confidence=body.confidence,
        safety_flags=body.safety_flags,
    )
    return {
        "category": decision.category.value,
        "action": decision.action.value,
        "message": decision.message,
    }


@router.get("/settings", response_model=CoachSettings)
async def get_settings(runtime: CoachRuntime = Depends(get_runtime)):
    return runtime.settings


@router.put("/settings", response_model=CoachSettings)
async def update_settings(body: CoachSettings, runtime: CoachRuntime = Depends(get_runtime)):
    return runtime.update_settings(body)


@router.get("/narrative")
async def narrative(runtime: CoachRuntime = Depends(get_runtime)):
    return {"narrative": await runtime.get_journey_narrative()}


@router.delete("/memory", status_code=204)
async def clear_memory(
    start: datetime | None = None,
    end: datetime | None = None,
    runtime: CoachRuntime = Depends(get_runtime),
):
    """Clear coach history, or only the events within [start, end]."""
    if (start is None) != (end is None):
        raise HTTPException(status_code=400, detail="start and end must be given together.")
    if start is not None and end is not None:
        if start > end:
            raise HTTPException(status_code=400, detail="start must not be after end.")
        try:
            await runtime.forget_period(start, end)
        except NotImplementedError:
            raise HTTPException(status_code=501, detail="Memory store cannot forget periods.")
    else:
        await runtime.clear_history()
    return Response(status_code=204)


@router.delete("/trust", status_code=204)
async def reset_trust(runtime: CoachRuntime = Depends(get_runtime)):
    """Reset the trust model (delta 0, reason trust_reset); clears safety mode."""
    await runtime.reset_trust()
    return Response(status_code=204)
