"""Area selection state machine transitions.

Defines valid transitions and enforces them. Invalid transitions
raise InvalidTransitionError rather than silently proceeding.

State Diagram:

    INACTIVE ──> ARMED ──> DRAGGING ──┬──> COMMITTED ──┐
                   │                  │                ├──> INACTIVE
                   │                  └──> CANCELLED ──┘
                   └──────────────────────> CANCELLED

    ARMED / DRAGGING ──> CANCELLED  (Escape, stray pointer-up)
"""
from __future__ import annotations

from .errors import InvalidTransitionError
from .models import SelectionState

VALID_TRANSITIONS: dict[SelectionState, set[SelectionState]] = {
    SelectionState.INACTIVE: {
        SelectionState.ARMED,
    },
    SelectionState.ARMED: {
        SelectionState.DRAGGING,
        SelectionState.CANCELLED,
    },
    SelectionState.DRAGGING: {
        SelectionState.COMMITTED,
        SelectionState.CANCELLED,
    },
    SelectionState.COMMITTED: {
        SelectionState.INACTIVE,
    },
    SelectionState.CANCELLED: {
        SelectionState.INACTIVE,
    },
}


def validate_transition(current: SelectionState, target: SelectionState) -> None:
    """Validate a state transition. Raises InvalidTransitionError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(sorted(s.value for s in allowed)) or "none"
        raise InvalidTransitionError(current.value, target.value, allowed_str)
