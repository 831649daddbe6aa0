"""Traffic log: RichLog panel showing router hops."""

from __future__ import annotations

from rich.markup import escape
from textual.widgets import RichLog

from webinsight.adapters.events import ResponseDelivered, TrafficEvent


class TrafficLog(RichLog):
    """Collapsible log of requests, responses and notifications."""

    def __init__(self, **kwargs) -> None:
        super().__init__(
            auto_scroll=True,
            wrap=True,
            markup=True,
            highlight=False,
            max_lines=5000,
            **kwargs,
        )

    def log_event(self, event: TrafficEvent) -> None:
        route = f"{escape(event.source)} → {escape(event.target or '*')}"
        if isinstance(event, ResponseDelivered):
            if event.success:
                self.write(f"  [green]ok[/green] {route} [dim]{event.kind}[/dim]")
            else:
                self.write(
                    f"  [red]fail[/red] {route} [dim]{event.kind}[/dim] "
                    f"{escape(event.error or '')}"
                )
            return
        if event.event_type == "notification_posted":
            self.write(f"[magenta]notify[/magenta] {route} [bold]{event.kind}[/bold]")
            return
        self.write(f"[bold cyan]{event.kind}[/bold cyan] {route}")

    def toggle(self) -> None:
        self.toggle_class("visible")
