from __future__ import annotations

import pytest

from webinsight.engine.errors import InvalidTransitionError, SelectionAlreadyActiveError
from webinsight.engine.lifecycle import validate_transition
from webinsight.engine.models import Rect, SelectionState
from webinsight.engine.selection import (
    KeyDown,
    PointerDown,
    PointerMove,
    PointerUp,
    RecordingSurface,
    SelectionStateMachine,
    drag_events,
)


def _machine(min_size: float = 5.0) -> tuple[SelectionStateMachine, RecordingSurface, list[Rect]]:
    surface = RecordingSurface()
    commits: list[Rect] = []
    machine = SelectionStateMachine(min_size=min_size, surface=surface, on_commit=commits.append)
    return machine, surface, commits


def test_drag_commits_normalized_rect() -> None:
    machine, surface, commits = _machine()
    machine.activate()

    machine.handle(PointerDown(100, 100))
    machine.handle(PointerMove(70, 60))
    state = machine.handle(PointerUp(40, 30))

    assert state == SelectionState.COMMITTED
    assert commits == [Rect(x=40, y=30, width=60, height=70)]
    assert machine.committed_rect == Rect(x=40, y=30, width=60, height=70)
    assert surface.visible is False
    assert surface.calls[0] == "install"
    assert surface.calls[-1] == "hide"


@pytest.mark.parametrize(
    ("start", "end"),
    [
        ((10, 10), (50, 40)),
        ((50, 10), (10, 40)),
        ((10, 40), (50, 10)),
        ((50, 40), (10, 10)),
    ],
)
def test_every_drag_direction_gives_the_same_rect(start, end) -> None:
    machine, _, commits = _machine()
    machine.activate()
    for event in drag_events(start, end, steps=2):
        machine.handle(event)

    assert commits == [Rect(x=10, y=10, width=40, height=30)]


def test_selection_below_min_size_cancels_without_commit() -> None:
    machine, surface, commits = _machine()
    machine.activate()

    machine.handle(PointerDown(10, 10))
    state = machine.handle(PointerUp(12, 100))

    assert state == SelectionState.INACTIVE
    assert commits == []
    assert surface.installed is False
    assert machine.session is None


def test_tiny_drag_is_cancelled() -> None:
    machine, _, commits = _machine(min_size=5)
    machine.activate()

    states = [machine.handle(event) for event in drag_events((10, 10), (12, 11))]

    assert states[-1] == SelectionState.INACTIVE
    assert commits == []


def test_activate_twice_raises() -> None:
    machine, _, _ = _machine()
    machine.activate()

    with pytest.raises(SelectionAlreadyActiveError, match="already active"):
        machine.activate()


def test_stray_pointer_up_cancels() -> None:
    machine, surface, commits = _machine()
    machine.activate()

    state = machine.handle(PointerUp(20, 20))

    assert state == SelectionState.INACTIVE
    assert commits == []
    assert "remove" in surface.calls


@pytest.mark.parametrize("drag_first", [False, True])
def test_escape_cancels_armed_or_dragging(drag_first: bool) -> None:
    machine, surface, commits = _machine()
    machine.activate()
    if drag_first:
        machine.handle(PointerDown(0, 0))
        machine.handle(PointerMove(50, 50))

    state = machine.handle(KeyDown("Escape"))

    assert state == SelectionState.INACTIVE
    assert commits == []
    assert surface.installed is False


def test_other_keys_and_unmapped_events_are_ignored() -> None:
    machine, _, _ = _machine()
    machine.activate()

    assert machine.handle(KeyDown("a")) == SelectionState.ARMED
    assert machine.handle(PointerMove(5, 5)) == SelectionState.ARMED


def test_events_while_inactive_are_ignored() -> None:
    machine, surface, commits = _machine()

    assert machine.handle(PointerDown(0, 0)) == SelectionState.INACTIVE
    assert machine.handle(PointerUp(50, 50)) == SelectionState.INACTIVE
    assert commits == []
    assert surface.calls == []


def test_teardown_is_idempotent_and_allows_reactivation() -> None:
    machine, surface, _ = _machine()
    machine.activate()
    for event in drag_events((0, 0), (30, 30)):
        machine.handle(event)
    assert machine.state == SelectionState.COMMITTED

    machine.teardown()
    machine.teardown()

    assert machine.state == SelectionState.INACTIVE
    assert surface.calls.count("remove") == 1
    machine.activate()
    assert machine.state == SelectionState.ARMED


def test_committed_state_ignores_further_pointer_events() -> None:
    machine, _, commits = _machine()
    machine.activate()
    for event in drag_events((0, 0), (30, 30)):
        machine.handle(event)

    machine.handle(PointerDown(1, 1))
    machine.handle(PointerUp(90, 90))

    assert len(commits) == 1
    assert machine.state == SelectionState.COMMITTED


def test_invalid_transition_is_rejected() -> None:
    with pytest.raises(InvalidTransitionError, match="inactive -> committed"):
        validate_transition(SelectionState.INACTIVE, SelectionState.COMMITTED)


def test_rect_from_dict_rejects_bad_data() -> None:
    assert Rect.from_dict({"x": 1, "y": 2, "width": 3, "height": 4}) == Rect(1, 2, 3, 4)
    for bad in (None, {"x": 1}, {"x": "1", "y": 2, "width": 3, "height": 4},
                {"x": True, "y": 2, "width": 3, "height": 4}):
        with pytest.raises(ValueError):
            Rect.from_dict(bad)


def test_rect_scaled_rounds_to_device_pixels() -> None:
    assert Rect(40, 30, 60, 70).scaled(1.5) == Rect(60, 45, 90, 105)
