"""Area selection modal.

A terminal cannot drag over the rendered page, so the user types the
two corners instead. The result is replayed into the tab's selection
as a pointer drag; cancelling sends Escape.

Returns ((x1, y1), (x2, y2)) if confirmed, None if cancelled.
"""
from __future__ import annotations

from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, Static

Corners = tuple[tuple[float, float], tuple[float, float]]


def parse_corners(text: str) -> Corners | None:
    """Parse "x1 y1 x2 y2" (commas allowed) into two corner points."""
    parts = text.replace(",", " ").split()
    if len(parts) != 4:
        return None
    try:
        x1, y1, x2, y2 = (float(p) for p in parts)
    except ValueError:
        return None
    return (x1, y1), (x2, y2)


class AreaPromptScreen(ModalScreen[Corners | None]):
    """Ask for the corners of the area to capture."""

    CSS_PATH = "../styles/modal.tcss"
    BINDINGS = [
        ("escape", "cancel", "Cancel"),
    ]

    def compose(self) -> ComposeResult:
        with Vertical(id="area-dialog"):
            yield Label("Select an area")
            yield Static(
                "[dim]Enter two corners in CSS pixels: x1 y1 x2 y2[/dim]",
                markup=True,
            )
            yield Input(placeholder="40 30 100 100", id="area-input")
            yield Static("", id="area-error")
            with Horizontal(id="area-actions"):
                yield Button("Capture", id="btn-area-capture", variant="primary")
                yield Button("[Esc] Cancel", id="btn-area-cancel")

    def on_mount(self) -> None:
        self.query_one("#area-input", Input).focus()

    def _submit(self) -> None:
        corners = parse_corners(self.query_one("#area-input", Input).value)
        if corners is None:
            self.query_one("#area-error", Static).update(
                "[red]Expected four numbers.[/red]"
            )
            return
        self.dismiss(corners)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self._submit()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "btn-area-capture":
            self._submit()
        elif event.button.id == "btn-area-cancel":
            self.dismiss(None)

    def action_cancel(self) -> None:
        self.dismiss(None)
