"""Area selection state machine.

Pointer and key events are fed through an explicit event-to-handler
table, so the machine runs without a rendering surface. Visual effects
go through a SelectionSurface; RecordingSurface is the headless one.

A committed selection stays COMMITTED until the owner calls
teardown(), which it does once the capture request has resolved. A
cancelled one tears down immediately. Either way teardown() is the
single exit path and is safe to call repeatedly.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from .errors import SelectionAlreadyActiveError
from .lifecycle import validate_transition
from .models import Point, Rect, SelectionSession, SelectionState

logger = logging.getLogger(__name__)

DEFAULT_MIN_SIZE = 5.0
ESCAPE_KEY = "Escape"


# ── Events ──


@dataclass(frozen=True)
class PointerDown:
    x: float
    y: float


@dataclass(frozen=True)
class PointerMove:
    x: float
    y: float


@dataclass(frozen=True)
class PointerUp:
    x: float
    y: float


@dataclass(frozen=True)
class KeyDown:
    key: str


SelectionEvent = PointerDown | PointerMove | PointerUp | KeyDown


def drag_events(
    start: tuple[float, float], end: tuple[float, float], steps: int = 1,
) -> list[SelectionEvent]:
    """Pointer events for a straight drag from ``start`` to ``end``."""
    (x1, y1), (x2, y2) = start, end
    steps = max(1, steps)
    events: list[SelectionEvent] = [PointerDown(x1, y1)]
    for i in range(1, steps + 1):
        t = i / steps
        events.append(PointerMove(x1 + (x2 - x1) * t, y1 + (y2 - y1) * t))
    events.append(PointerUp(x2, y2))
    return events


# ── Surface ──


class SelectionSurface(Protocol):
    """Visual side of a selection: overlay, tracking box, listeners."""

    def install(self) -> None: ...

    def draw_box(self, rect: Rect) -> None: ...

    def hide(self) -> None: ...

    def remove(self) -> None: ...


@dataclass
class RecordingSurface:
    """Headless surface that remembers what it was asked to draw."""

    calls: list[str] = field(default_factory=list)
    installed: bool = False
    visible: bool = False
    box: Rect | None = None

    def install(self) -> None:
        self.calls.append("install")
        self.installed = True
        self.visible = True

    def draw_box(self, rect: Rect) -> None:
        self.calls.append("draw_box")
        self.box = rect

    def hide(self) -> None:
        self.calls.append("hide")
        self.visible = False

    def remove(self) -> None:
        self.calls.append("remove")
        self.installed = False
        self.visible = False
        self.box = None


# ── Machine ──


class SelectionStateMachine:
    """One page's area selection. At most one session at a time."""

    def __init__(
        self,
        min_size: float = DEFAULT_MIN_SIZE,
        surface: SelectionSurface | None = None,
        on_commit: Callable[[Rect], Any] | None = None,
    ) -> None:
        self.min_size = min_size
        self.surface: SelectionSurface = surface or RecordingSurface()
        self.on_commit = on_commit
        self._state = SelectionState.INACTIVE
        self._session: SelectionSession | None = None
        self.committed_rect: Rect | None = None
        self._handlers: dict[
            tuple[SelectionState, type], Callable[[Any], None]
        ] = {
            (SelectionState.ARMED, PointerDown): self._on_pointer_down,
            (SelectionState.ARMED, PointerUp): self._on_stray_pointer_up,
            (SelectionState.ARMED, KeyDown): self._on_key_down,
            (SelectionState.DRAGGING, PointerMove): self._on_pointer_move,
            (SelectionState.DRAGGING, PointerUp): self._on_pointer_up,
            (SelectionState.DRAGGING, KeyDown): self._on_key_down,
        }

    @property
    def state(self) -> SelectionState:
        return self._state

    @property
    def session(self) -> SelectionSession | None:
        return self._session

    def activate(self) -> SelectionSession:
        """Start a session. Raises SelectionAlreadyActiveError otherwise."""
        if self._state != SelectionState.INACTIVE:
            raise SelectionAlreadyActiveError()
        self._transition(SelectionState.ARMED)
        self._session = SelectionSession()
        self.committed_rect = None
        self.surface.install()
        logger.info("Selection armed (session=%s)", self._session.session_id[:8])
        return self._session

    def handle(self, event: SelectionEvent) -> SelectionState:
        """Feed one input event. Events with no table entry are ignored."""
        handler = self._handlers.get((self._state, type(event)))
        if handler is None:
            logger.debug(
                "Ignoring %s in state %s", type(event).__name__, self._state.value
            )
            return self._state
        handler(event)
        return self._state

    def teardown(self) -> None:
        """Remove surface and listeners, return to INACTIVE. Idempotent."""
        if self._state == SelectionState.INACTIVE:
            return
        if self._state in (SelectionState.ARMED, SelectionState.DRAGGING):
            self._transition(SelectionState.CANCELLED)
        self.surface.remove()
        if self._session is not None:
            self._session.active = False
        self._session = None
        self._transition(SelectionState.INACTIVE)
        logger.debug("Selection torn down")

    # ── Table handlers ──

    def _on_pointer_down(self, event: PointerDown) -> None:
        assert self._session is not None
        origin = Point(event.x, event.y)
        self._session.origin = origin
        self._session.current = origin
        self._transition(SelectionState.DRAGGING)
        self.surface.draw_box(Rect(x=origin.x, y=origin.y, width=0, height=0))

    def _on_pointer_move(self, event: PointerMove) -> None:
        assert self._session is not None
        self._session.current = Point(event.x, event.y)
        rect = self._session.rect()
        if rect is not None:
            self.surface.draw_box(rect)

    def _on_pointer_up(self, event: PointerUp) -> None:
        assert self._session is not None
        self._session.current = Point(event.x, event.y)
        rect = self._session.rect()
        if rect is None or rect.is_smaller_than(self.min_size):
            logger.info("Selection too small, cancelled: %s", rect)
            self._cancel()
            return
        self._transition(SelectionState.COMMITTED)
        self.committed_rect = rect
        self.surface.hide()
        logger.info("Area selected (viewport coordinates): %s", rect.to_dict())
        if self.on_commit is not None:
            self.on_commit(rect)

    def _on_stray_pointer_up(self, event: PointerUp) -> None:
        logger.debug("Pointer up without pointer down, cancelling")
        self._cancel()

    def _on_key_down(self, event: KeyDown) -> None:
        if event.key == ESCAPE_KEY:
            logger.info("Selection cancelled by Escape")
            self._cancel()

    def _cancel(self) -> None:
        self._transition(SelectionState.CANCELLED)
        self.teardown()

    def _transition(self, target: SelectionState) -> None:
        validate_transition(self._state, target)
        self._state = target
