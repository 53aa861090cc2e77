"""Trust & safety classification: error / safety flags -> remediation.

Pure and deterministic. First match wins; safety flags outrank the
confidence check so medical risk is never reported as mere low confidence.
"""

import enum
from collections.abc import Iterable
from dataclasses import dataclass


class TrustIssueCategory(str, enum.Enum):
    timeout = "timeout"
    network = "network"
    medical = "medical"
    overtraining = "overtraining"
    low_confidence = "low_confidence"
    data = "data"
    unknown = "unknown"


class TrustAction(str, enum.Enum):
    recover = "recover"
    fallback = "fallback"
    block = "block"
    adapt = "adapt"
    warn = "warn"
    explain = "explain"


@dataclass(frozen=True)
class TrustDecision:
    category: TrustIssueCategory
    action: TrustAction
    message: str


LOADING_TIMEOUT_HINT = "loading_timeout"
NETWORK_HINTS = ("network", "timeout", "failed to fetch", "fetch")
DATA_HINTS = ("invalid", "schema", "rls", "row-level", "permission")
MEDICAL_HINTS = ("pain", "injury", "medical")
OVERTRAINING_HINTS = ("fatigue", "overload", "overtraining")

LOW_CONFIDENCE_THRESHOLD = 0.5

DECISIONS = {
    TrustIssueCategory.timeout: TrustDecision(
        TrustIssueCategory.timeout,
        TrustAction.recover,
        "Loading is taking too long. Try to recover.",
    ),
    TrustIssueCategory.network: TrustDecision(
        TrustIssueCategory.network,
        TrustAction.fallback,
        "Network problems. Using offline data.",
    ),
    TrustIssueCategory.medical: TrustDecision(
        TrustIssueCategory.medical,
        TrustAction.block,
        "There is a health risk. This action is limited.",
    ),
    TrustIssueCategory.overtraining: TrustDecision(
        TrustIssueCategory.overtraining,
        TrustAction.adapt,
        "High load detected. We recommend adapting.",
    ),
    TrustIssueCategory.low_confidence: TrustDecision(
        TrustIssueCategory.low_confidence,
        TrustAction.warn,
        "Not enough data for a confident conclusion.",
    ),
    TrustIssueCategory.data: TrustDecision(
        TrustIssueCategory.data,
        TrustAction.explain,
        "There is a problem with the data. Showing the facts we have.",
    ),
    TrustIssueCategory.unknown: TrustDecision(
        TrustIssueCategory.unknown,
        TrustAction.explain,
        "Something went wrong. We tried to keep your data safe.",
    ),
}


def _includes_hint(value: str, hints: Iterable[str]) -> bool:
    lowered = value.lower()
    return any(hint in lowered for hint in hints)


def _error_text(error: BaseException | str | None) -> str:
    if error is None:
        return ""
    return str(error)


def classify(
    error: BaseException | str | None = None,
    *,
    confidence: float | None = None,
    safety_flags: Iterable[str] | None = None,
) -> TrustDecision:
    """Map an error and/or safety context to a remediation decision. Never raises."""
    message = _error_text(error)
    flags = [str(flag).lower() for flag in (safety_flags or [])]

    if LOADING_TIMEOUT_HINT in message.lower():
        return DECISIONS[TrustIssueCategory.timeout]
    if _includes_hint(message, NETWORK_HINTS):
        return DECISIONS[TrustIssueCategory.network]
    if any(_includes_hint(flag, MEDICAL_HINTS) for flag in flags):
        return DECISIONS[TrustIssueCategory.medical]
    if any(_includes_hint(flag, OVERTRAINING_HINTS) for flag in flags):
        return DECISIONS[TrustIssueCategory.overtraining]
    if confidence is not None and confidence < LOW_CONFIDENCE_THRESHOLD:
        return DECISIONS[TrustIssueCategory.low_confidence]
    if _includes_hint(message, DATA_HINTS):
        return DECISIONS[TrustIssueCategory.data]
    return DECISIONS[TrustIssueCategory.unknown]
