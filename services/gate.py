from dataclasses import dataclass
from enum import Enum
from typing import Optional

from services.intent import ActionIntent, ActionKind

DEFAULT_CONFIDENCE_THRESHOLD = 0.7

VALUE_REQUIRED_KINDS = {
    ActionKind.SET_EXPIRY,
    ActionKind.SET_QUANTITY,
    ActionKind.INCREASE_QUANTITY,
    ActionKind.DECREASE_QUANTITY,
    ActionKind.SET_REORDER_THRESHOLD,
    ActionKind.EDIT_FIELD,
}

NOT_AN_ACTION_MESSAGE = "This appears to be a question, not an action request."

_VALUE_HINTS = {
    ActionKind.SET_EXPIRY: 'For example: "Set expiry to March 30, 2026"',
    ActionKind.SET_QUANTITY: 'For example: "Set quantity to 50"',
    ActionKind.INCREASE_QUANTITY: 'For example: "Add 20 units"',
    ActionKind.DECREASE_QUANTITY: 'For example: "Sold 15 units"',
    ActionKind.SET_REORDER_THRESHOLD: 'For example: "Set reorder level to 10"',
    ActionKind.EDIT_FIELD: 'For example: "Rename it to Angus Biltong Original"',
}


class Verdict(str, Enum):
    NOT_AN_ACTION = "not_an_action"
    NEEDS_CONFIRMATION = "needs_confirmation"
    PROCEED = "proceed"


@dataclass(frozen=True)
class GateDecision:
    verdict: Verdict
    reason: str = ""
    message: Optional[str] = None


def evaluate_intent(
    intent: ActionIntent,
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> GateDecision:
    """Pure, deterministic decision on whether an intent may be executed."""
    if intent.kind == ActionKind.NONE:
        return GateDecision(Verdict.NOT_AN_ACTION, "no_action", NOT_AN_ACTION_MESSAGE)
    if intent.confidence < confidence_threshold:
        return GateDecision(Verdict.NOT_AN_ACTION, "low_confidence", NOT_AN_ACTION_MESSAGE)
    if intent.kind in VALUE_REQUIRED_KINDS and not intent.value:
        hint = _VALUE_HINTS.get(intent.kind, "")
        return GateDecision(
            Verdict.NEEDS_CONFIRMATION,
            "missing_value",
            f"I understood you want to update items, but I need the value. {hint}".strip(),
        )
    return GateDecision(Verdict.PROCEED)
