"""Status bar: bottom line showing the panel status and counts."""

from __future__ import annotations

from rich.text import Text
from textual.reactive import reactive
from textual.widget import Widget

from webinsight.engine.models import Severity, StatusLine

SEVERITY_STYLES = {
    Severity.INFO: "cyan",
    Severity.SUCCESS: "green",
    Severity.WARNING: "yellow",
    Severity.ERROR: "red bold",
}


class StatusBar(Widget):
    """Single-line status bar with the current status, filter and item count."""

    message: reactive[str] = reactive("")
    severity: reactive[Severity] = reactive(Severity.INFO)
    filter_name: reactive[str] = reactive("")
    item_count: reactive[int] = reactive(0)
    offline: reactive[bool] = reactive(False)

    def show(self, status: StatusLine) -> None:
        self.message = status.message
        self.severity = status.severity

    def render(self) -> Text:
        bar = Text()

        if self.offline:
            bar.append(" OFFLINE ", style="bold black on yellow")
            bar.append(" ", style="dim")

        label = f"#{self.filter_name}" if self.filter_name else "All items"
        bar.append(f" {label} ", style="bold")
        bar.append(" │ ", style="dim")
        bar.append(f"{self.item_count} item(s)", style="dim")

        if self.message:
            bar.append(" │ ", style="dim")
            style = SEVERITY_STYLES.get(self.severity, "white")
            bar.append(f"● {self.message}", style=style)

        return bar
