"""Panel screen: tags, items, key points and the report buttons."""

from __future__ import annotations

import asyncio
import logging

from rich.markup import escape
from textual import work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import Screen
from textual.widgets import Button, Header, Input, Markdown, Static

from webinsight.adapters.runtime import WebInsightRuntime
from webinsight.engine.models import ContentItem, SelectionState, Severity
from webinsight.engine.page import PageDocument
from webinsight.engine.selection import ESCAPE_KEY, KeyDown, drag_events
from webinsight.shared.services.preferences import UserPreferences
from webinsight.tui.screens.area_prompt import AreaPromptScreen, Corners
from webinsight.tui.widgets.item_tree import ItemTree
from webinsight.tui.widgets.status_bar import StatusBar
from webinsight.tui.widgets.tag_tree import TagTree
from webinsight.tui.widgets.traffic_log import TrafficLog

logger = logging.getLogger(__name__)


class PanelScreen(Screen):
    """Side panel workspace driven by a PanelController."""

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
        self.panel = runtime.panel
        self.prefs = prefs or UserPreferences()
        self.offline = offline
        self.initial_tab = initial_tab
        self._consumer_task: asyncio.Task | None = None

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal(id="workspace"):
            yield TagTree(id="tag-tree")
            with Vertical(id="main-pane"):
                yield ItemTree(id="item-tree")
                with Horizontal(id="task-buttons"):
                    yield Button("Get Key Points", id="btn-key-points")
                    yield Button("Generate Report", id="btn-report", variant="primary")
                yield Markdown("", id="key-points")
                yield Static("", id="item-details", markup=True)
                yield TrafficLog(id="traffic-log")
        yield Input(placeholder="Tag name (Enter adds it to the highlighted item)", id="tag-input")
        yield StatusBar(id="status-bar")

    async def on_mount(self) -> None:
        self.panel.add_listener(self._on_panel_changed)
        self.query_one("#status-bar", StatusBar).offline = self.offline
        if self.runtime.bus is not None:
            self._consumer_task = asyncio.create_task(
                self._consume_traffic(), name="traffic-consumer",
            )
        if self.initial_tab is not None:
            tab_id, document = self.initial_tab
            self.runtime.open_tab(tab_id, document)
        await self.runtime.start(self.prefs.last_filter_tag_id)
        for area in ("tags", "items", "buttons", "status"):
            self._on_panel_changed(area)

    async def on_unmount(self) -> None:
        if self._consumer_task is not None:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None

    async def _consume_traffic(self) -> None:
        log = self.query_one("#traffic-log", TrafficLog)
        async for event in self.runtime.bus.consume():
            log.log_event(event)

    # ── Panel → widgets ──

    def _on_panel_changed(self, area: str) -> None:
        if area == "status":
            self.query_one("#status-bar", StatusBar).show(self.panel.status)
        elif area == "items":
            items = self.panel.cache.items()
            self.query_one("#item-tree", ItemTree).set_items(items)
            self.query_one("#status-bar", StatusBar).item_count = len(items)
        elif area == "tags":
            self.query_one("#tag-tree", TagTree).set_tags(self.panel.tags, self.panel.filter_tag)
        elif area == "buttons":
            self._render_buttons()
        elif area == "key_points":
            text = (self.panel.last_key_points or {}).get("keyPoints") or ""
            self.query_one("#key-points", Markdown).update(text)

    def _render_buttons(self) -> None:
        for button_id, state in (
            ("#btn-key-points", self.panel.key_points_button),
            ("#btn-report", self.panel.report_button),
        ):
            button = self.query_one(button_id, Button)
            button.label = state.label
            button.disabled = not state.enabled
            button.display = state.visible
        tag = self.panel.filter_tag
        self.query_one("#status-bar", StatusBar).filter_name = tag.name if tag else ""
        if tag is None:
            self.query_one("#key-points", Markdown).update("")

    # ── Widgets → panel ──

    def on_tag_tree_filter_chosen(self, event: TagTree.FilterChosen) -> None:
        self.prefs.last_filter_tag_id = event.tag.id if event.tag else None
        self._run(self.panel.filter_by(event.tag))

    def on_item_tree_delete_requested(self, event: ItemTree.DeleteRequested) -> None:
        self._run(self.panel.delete_item(event.item.id))

    def on_tree_node_highlighted(self, event: ItemTree.NodeHighlighted) -> None:
        if isinstance(event.node.data, ContentItem):
            self._show_details(event.node.data.id)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "btn-key-points":
            self._run(self.panel.get_key_points())
        elif event.button.id == "btn-report":
            self._run(self.panel.generate_report({"preset": self.prefs.report_preset}))

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "tag-input":
            return
        name = event.value.strip()
        item = self.query_one("#item-tree", ItemTree).highlighted_item
        if not name:
            return
        if item is None:
            self.panel.show_status("Error: Select an item first.", Severity.ERROR)
            return
        event.input.value = ""
        self._run(self.panel.add_tag(item.id, name))

    @work(exclusive=False)
    async def _run(self, coro) -> None:
        await coro

    @work(exclusive=True, group="details")
    async def _show_details(self, item_id: int) -> None:
        details = await self.panel.details(item_id)
        target = self.query_one("#item-details", Static)
        if details is None:
            target.update("")
            return
        item = details.item
        lines = [f"[bold]{escape(item.title)}[/bold]"]
        if item.url:
            lines.append(f"[dim]{escape(item.url)}[/dim]")
        if item.word_count:
            lines.append(f"{item.word_count} words, ~{item.reading_time_minutes} min read")
        if details.tags_error:
            lines.append(f"[red]Tags: {escape(details.tags_error)}[/red]")
        elif details.tags:
            lines.append("Tags: " + ", ".join(f"#{escape(t.name)}" for t in details.tags))
        target.update("\n".join(lines))

    # ── Actions (bound in PanelApp) ──

    def key_points(self) -> None:
        self._run(self.panel.get_key_points())

    def report(self) -> None:
        self._run(self.panel.generate_report({"preset": self.prefs.report_preset}))

    def save_page(self) -> None:
        self._run(self.panel.save_page())

    def save_selection(self) -> None:
        self._run(self.panel.save_selection())

    def capture_visible(self) -> None:
        self._run(self.panel.capture_visible())

    def clear_filter(self) -> None:
        self.prefs.last_filter_tag_id = None
        self._run(self.panel.clear_filter())

    def toggle_traffic_log(self) -> None:
        self.query_one("#traffic-log", TrafficLog).toggle()

    @work(exclusive=True, group="area")
    async def area_capture(self) -> None:
        tab_id = self.runtime.coordinator.active_tab_id
        agent = self.runtime.agents.get(tab_id) if tab_id is not None else None
        response = await self.panel.start_area_capture()
        if not response.success or agent is None:
            return
        corners: Corners | None = await self.app.push_screen_wait(AreaPromptScreen())
        if corners is None:
            agent.feed(KeyDown(ESCAPE_KEY))
            self.panel.show_status("Area capture cancelled.", Severity.INFO)
            return
        state = SelectionState.INACTIVE
        for event in drag_events(*corners, steps=4):
            state = agent.feed(event)
        if state != SelectionState.COMMITTED:
            self.panel.show_status("Selection too small; nothing captured.", Severity.WARNING)
            return
        capture = await agent.wait_for_capture()
        if capture is not None and capture.success:
            self.panel.show_status("Area screenshot saved!", Severity.SUCCESS)
        else:
            error = capture.error if capture is not None else "nothing captured"
            self.panel.show_status(f"Error: {error}", Severity.ERROR)
