"""WebInsight TUI: Textual application class."""

from __future__ import annotations

import logging
from pathlib import Path

from textual.app import App

from webinsight.adapters.runtime import WebInsightRuntime
from webinsight.engine.page import PageDocument
from webinsight.shared.services.preferences import UserPreferences
from webinsight.tui.screens.panel import PanelScreen

logger = logging.getLogger(__name__)


class PanelApp(App):
    """Terminal side panel for saved captures, tags and reports."""

    TITLE = "WebInsight"
    SUB_TITLE = "Capture & Report"
    CSS_PATH = Path("styles/app.tcss")

    BINDINGS = [
        ("ctrl+q", "quit", "Quit"),
        ("f1", "toggle_traffic_log", "Traffic"),
        ("f2", "key_points", "Key Points"),
        ("f3", "report", "Report"),
        ("f4", "save_page", "Save Page"),
        ("f5", "save_selection", "Save Selection"),
        ("f6", "capture_visible", "Screenshot"),
        ("f7", "area_capture", "Area Capture"),
        ("f8", "clear_filter", "All Items"),
    ]

    def __init__(
        self,
        runtime: WebInsightRuntime,
        prefs: UserPreferences | None = None,
        offline: bool = False,
        initial_tab: tuple[int, PageDocument] | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.runtime = runtime
        self.prefs = prefs or UserPreferences.load()
        self.offline = offline
        self.initial_tab = initial_tab

    def on_mount(self) -> None:
        if self.prefs.dark is not None:
            self.theme = "textual-dark" if self.prefs.dark else "textual-light"
        self.push_screen(PanelScreen(
            self.runtime, self.prefs, offline=self.offline, initial_tab=self.initial_tab,
        ))

    async def on_unmount(self) -> None:
        self.prefs.save()
        await self.runtime.shutdown()

    def _panel_screen(self) -> PanelScreen | None:
        screen = self.screen
        return screen if isinstance(screen, PanelScreen) else None

    def action_key_points(self) -> None:
        if screen := self._panel_screen():
            screen.key_points()

    def action_report(self) -> None:
        if screen := self._panel_screen():
            screen.report()

    def action_save_page(self) -> None:
        if screen := self._panel_screen():
            screen.save_page()

    def action_save_selection(self) -> None:
        if screen := self._panel_screen():
            screen.save_selection()

    def action_capture_visible(self) -> None:
        if screen := self._panel_screen():
            screen.capture_visible()

    def action_area_capture(self) -> None:
        if screen := self._panel_screen():
            screen.area_capture()

    def action_clear_filter(self) -> None:
        if screen := self._panel_screen():
            screen.clear_filter()

    def action_toggle_traffic_log(self) -> None:
        if screen := self._panel_screen():
            screen.toggle_traffic_log()
