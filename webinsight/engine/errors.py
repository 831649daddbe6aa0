"""Exception hierarchy for the coordination layer.

Specific exceptions for each failure mode. They are raised inside a
context and converted to failure Responses at the router boundary, so
none of them ever crosses from one context into another.
"""
from __future__ import annotations


class WebInsightError(Exception):
    """Base exception for all coordination errors."""


class MessageRoutingError(WebInsightError):
    """Failed to deliver a message to the target context."""
    def __init__(self, message_id: str, target_id: str, reason: str):
        self.message_id = message_id
        self.target_id = target_id
        self.reason = reason
        super().__init__(reason)


class PayloadSerializationError(WebInsightError):
    """Payload cannot cross a context boundary."""
    def __init__(self, kind: str, reason: str):
        self.kind = kind
        self.reason = reason
        super().__init__(f"Payload for {kind} is not serializable: {reason}")


class ValidationError(WebInsightError):
    """Request rejected before any collaborator was touched."""


class SelectionError(WebInsightError):
    """Area selection could not proceed."""


class SelectionAlreadyActiveError(SelectionError):
    """activate() called while a selection session exists."""
    def __init__(self) -> None:
        super().__init__("Area selection is already active.")


class InvalidTransitionError(ValueError):
    """State machine asked to make a transition it does not allow."""
    def __init__(self, current: str, target: str, allowed: str):
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid state transition: {current} -> {target}. "
            f"Allowed from {current}: {allowed}"
        )


class CollaboratorError(WebInsightError):
    """An external collaborator (store, renderer, capturer) failed."""


class ItemNotFoundError(CollaboratorError):
    def __init__(self, item_id: int):
        self.item_id = item_id
        super().__init__(f"Content item not found: {item_id}")


class InferenceError(CollaboratorError):
    """The inference service returned an error or unusable output."""
