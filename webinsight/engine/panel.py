"""Side panel view model.

Owns the item cache and the report orchestrator, and holds everything a
view renders: status line, button states, tag list, active filter and
the last key-points result. Views subscribe with add_listener() and are
told which area changed ("status", "buttons", "items", "tags",
"key_points").

Button handlers bound every wait with a timeout and reset their button
on every exit path. Progress arrives as transient status lines; terminal
failures stay on screen until replaced.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .cache import ItemCache, ItemDetails
from .config import EngineConfig, timeout_or_none
from .message_router import MessageRouter, Subscription, kind_is
from .models import (
    COORDINATOR_ID,
    PANEL_ID,
    ButtonState,
    Message,
    MessageKind,
    Response,
    Severity,
    StatusLine,
    Tag,
    TaskRun,
    TaskStatus,
)
from .orchestrator import BUSY_ERROR, KEY_POINTS_TRIGGER, REPORT_TRIGGER, ReportOrchestrator

logger = logging.getLogger(__name__)

ViewListener = Callable[[str], None]

GENERATING_LABEL = "Generating..."
SUCCESS_STATUS_SECONDS = 5.0


def key_points_label(tag: Tag | None) -> str:
    return f'Get Key Points for "{tag.name}"' if tag else "Get Key Points"


def report_label(tag: Tag | None) -> str:
    return f'Generate "{tag.name}" Report' if tag else "Generate Report"


class PanelController:
    """Everything the side panel shows, driven over the router."""

    def __init__(
        self,
        router: MessageRouter,
        config: EngineConfig | None = None,
        peer_id: str = PANEL_ID,
    ) -> None:
        self.router = router
        self.config = config or EngineConfig()
        self.peer_id = peer_id
        self.cache = ItemCache(
            router, owner=peer_id,
            timeout=timeout_or_none(self.config.request_timeout_seconds),
        )
        self.orchestrator = ReportOrchestrator(
            router, self.cache, self.config, owner=peer_id, on_status=self.show_status,
        )
        self.status = StatusLine()
        self.tags: list[Tag] = []
        self.filter_tag: Tag | None = None
        self.key_points_button = ButtonState(label=key_points_label(None), visible=False)
        self.report_button = ButtonState(label=report_label(None), visible=False)
        self.last_key_points: dict[str, Any] | None = None
        self._listeners: list[ViewListener] = []
        self._subscriptions: list[Subscription] = []
        self._clear_timer: asyncio.TimerHandle | None = None
        self.cache.add_listener(lambda _cache: self._changed("items"))

    # ── Lifecycle ──

    async def start(self, filter_tag_id: int | None = None) -> None:
        self.router.register_peer(self.peer_id)
        self._subscriptions.append(self.cache.invalidate_on(MessageKind.DATA_CHANGED))
        self._subscriptions.append(self.router.on_receive(
            self.peer_id,
            kind_is(MessageKind.REPORT_GENERATION_STATUS),
            self._on_progress,
        ))
        self._subscriptions.append(self.router.on_receive(
            self.peer_id, kind_is(MessageKind.DATA_CHANGED), self._on_data_changed,
        ))
        await self.refresh_tags()
        tag = self._tag_by_id(filter_tag_id) if filter_tag_id is not None else None
        await self.filter_by(tag)
        logger.info("Panel %s started (%d items)", self.peer_id, len(self.cache))

    async def close(self) -> None:
        self._cancel_clear_timer()
        for sub in self._subscriptions:
            sub.cancel()
        self._subscriptions.clear()
        self.cache.close()
        self.router.unregister_peer(self.peer_id)

    def add_listener(self, listener: ViewListener) -> None:
        self._listeners.append(listener)

    def _changed(self, area: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(area)
            except Exception:
                logger.exception("Panel view listener failed for %s", area)

    # ── Status line ──

    def show_status(
        self,
        message: str,
        severity: Severity = Severity.INFO,
        duration: float | None = None,
    ) -> None:
        """Show a status line.

        Errors persist. Everything else clears after ``duration`` seconds
        (default ``status_clear_seconds``); a duration of 0 keeps it up.
        """
        self._cancel_clear_timer()
        if duration is None:
            duration = self.config.status_clear_seconds
        persistent = severity == Severity.ERROR or duration <= 0
        self.status = StatusLine(message=message, severity=severity, persistent=persistent)
        if not persistent:
            current = self.status
            self._clear_timer = asyncio.get_running_loop().call_later(
                duration, self._clear_status, current,
            )
        self._changed("status")

    def _clear_status(self, expected: StatusLine) -> None:
        if self.status is expected:
            self.status = StatusLine()
            self._changed("status")

    def _cancel_clear_timer(self) -> None:
        if self._clear_timer is not None:
            self._clear_timer.cancel()
            self._clear_timer = None

    def _on_progress(self, message: Message) -> None:
        payload = message.payload if isinstance(message.payload, dict) else {}
        text = payload.get("message")
        if not text:
            return
        self.show_status(str(text), Severity.coerce(payload.get("severity")))

    async def _on_data_changed(self, message: Message) -> None:
        payload = message.payload if isinstance(message.payload, dict) else {}
        if payload.get("reason") in ("tagged", "untagged"):
            await self.refresh_tags()

    # ── Tags and filtering ──

    async def refresh_tags(self) -> None:
        response = await self._request(MessageKind.GET_ALL_TAGS)
        if response.success and isinstance(response.payload, list):
            self.tags = sorted(
                (Tag.from_dict(raw) for raw in response.payload),
                key=lambda tag: tag.name.lower(),
            )
        else:
            logger.error("Failed to load tags: %s", response.error)
            self.tags = []
        if self.filter_tag is not None and self._tag_by_id(self.filter_tag.id) is None:
            self.filter_tag = None
            self._reset_buttons()
        self._changed("tags")

    def _tag_by_id(self, tag_id: int) -> Tag | None:
        for tag in self.tags:
            if tag.id == tag_id:
                return tag
        return None

    async def filter_by(self, tag: Tag | None) -> bool:
        """Show only items tagged ``tag`` (None shows everything)."""
        self.filter_tag = tag
        self.last_key_points = None
        self._reset_buttons()
        applied = await self.cache.reload(tag.id if tag else None)
        if not applied and self.cache.last_error:
            self.show_status(f"Error loading items: {self.cache.last_error}", Severity.ERROR)
        return applied

    async def clear_filter(self) -> bool:
        return await self.filter_by(None)

    def _reset_buttons(self) -> None:
        tag = self.filter_tag
        visible = tag is not None
        self.key_points_button = ButtonState(label=key_points_label(tag), visible=visible)
        self.report_button = ButtonState(label=report_label(tag), visible=visible)
        self._changed("buttons")

    # ── Task triggers ──

    async def get_key_points(self) -> TaskRun:
        tag = self.filter_tag
        if tag is None:
            return self._no_tag_run(KEY_POINTS_TRIGGER)
        if self.orchestrator.is_busy(tag.id, KEY_POINTS_TRIGGER):
            return await self.orchestrator.run_key_points(tag.id)

        self.last_key_points = None
        self.key_points_button = ButtonState(label=GENERATING_LABEL, enabled=False)
        self._changed("buttons")
        self.show_status(f'Generating key points for tag "{tag.name}"...', Severity.INFO, 0)
        timeout = self.config.report_timeout_seconds
        try:
            run = await self._bounded(
                self.orchestrator.run_key_points(tag.id), tag, timeout, KEY_POINTS_TRIGGER,
            )
        finally:
            self._reset_buttons()

        if run.status == TaskStatus.SUCCEEDED:
            result = run.result or {}
            self.last_key_points = result
            self.show_status(
                f"Key points generated and saved (ID: {result.get('newId')}). "
                f"{result.get('sourceInfo') or ''}".strip(),
                Severity.SUCCESS,
                SUCCESS_STATUS_SECONDS,
            )
            self._changed("key_points")
        else:
            self.show_status(f"Error: {run.error}", Severity.ERROR)
        return run

    async def generate_report(self, options: dict[str, Any] | None = None) -> TaskRun:
        tag = self.filter_tag
        if tag is None:
            return self._no_tag_run(REPORT_TRIGGER)
        if self.orchestrator.is_busy(tag.id):
            # The in-flight run owns the button; just report the rejection.
            return await self.orchestrator.run_report(tag.id, options)

        self.report_button = ButtonState(label=GENERATING_LABEL, enabled=False)
        self._changed("buttons")
        self.show_status(
            f'Generating report for tag "{tag.name}"... This may take a moment.',
            Severity.INFO, 0,
        )
        timeout = self.config.report_timeout_seconds
        try:
            run = await self._bounded(
                self.orchestrator.run_report(tag.id, options), tag, timeout, REPORT_TRIGGER,
            )
        finally:
            self._reset_buttons()

        if run.status == TaskStatus.SUCCEEDED:
            filename = (run.result or {}).get("filename")
            self.show_status(f"Report generated: {filename}", Severity.SUCCESS, SUCCESS_STATUS_SECONDS)
        elif run.error != BUSY_ERROR:
            self.show_status(f"Error: {run.error}", Severity.ERROR)
        return run

    async def _bounded(self, coro: Any, tag: Tag, timeout: float, trigger: str) -> TaskRun:
        try:
            return await asyncio.wait_for(coro, timeout=timeout_or_none(timeout))
        except asyncio.TimeoutError:
            logger.error("%s task for tag %s exceeded %ss", trigger, tag.id, timeout)
            run = TaskRun(tag_id=tag.id, trigger=trigger, status=TaskStatus.FAILED)
            run.error = f"timeout after {timeout}s"
            return run

    def _no_tag_run(self, trigger: str) -> TaskRun:
        self.show_status("Error: Select a tag first.", Severity.ERROR)
        return TaskRun(tag_id=-1, trigger=trigger, status=TaskStatus.FAILED,
                       error="Select a tag first.")

    # ── One-shot commands ──

    async def save_page(self, tab_id: int | None = None) -> Response:
        return await self._command(
            MessageKind.SAVE_PAGE_CONTENT, {"tabId": tab_id},
            "Saving page content...", "Page content saved!",
        )

    async def save_selection(self, tab_id: int | None = None) -> Response:
        return await self._command(
            MessageKind.SAVE_SELECTION, {"tabId": tab_id},
            "Saving selection...", "Selection saved!",
        )

    async def capture_visible(self, tab_id: int | None = None) -> Response:
        return await self._command(
            MessageKind.CAPTURE_VISIBLE_TAB, {"tabId": tab_id},
            "Capturing visible area...", "Screenshot saved!",
        )

    async def start_area_capture(self, tab_id: int | None = None) -> Response:
        return await self._command(
            MessageKind.INITIATE_AREA_CAPTURE, {"tabId": tab_id},
            "Initiating area capture...", "Select an area on the page (Esc to cancel).",
        )

    async def delete_item(self, item_id: int) -> Response:
        return await self._command(
            MessageKind.DELETE_ITEM, {"id": item_id}, "Deleting item...", "Item deleted.",
        )

    async def add_tag(self, item_id: int, tag_name: str) -> Response:
        return await self._command(
            MessageKind.ADD_TAG_TO_ITEM, {"contentId": item_id, "tagName": tag_name},
            None, f'Tag "{tag_name.strip()}" added.',
        )

    async def remove_tag(self, item_id: int, tag_id: int) -> Response:
        return await self._command(
            MessageKind.REMOVE_TAG_FROM_ITEM, {"contentId": item_id, "tagId": tag_id},
            None, "Tag removed.",
        )

    async def details(self, item_id: int) -> ItemDetails | None:
        return await self.cache.details(item_id)

    async def _command(
        self,
        kind: MessageKind,
        payload: dict[str, Any],
        pending: str | None,
        done: str,
    ) -> Response:
        if pending:
            self.show_status(pending, Severity.INFO, 0)
        response = await self._request(kind, payload)
        if response.success:
            self.show_status(done, Severity.SUCCESS)
        else:
            self.show_status(f"Error: {response.error}", Severity.ERROR)
        return response

    async def _request(self, kind: MessageKind, payload: Any = None) -> Response:
        return await self.router.request(
            self.peer_id, COORDINATOR_ID, kind, payload,
            timeout=timeout_or_none(self.config.request_timeout_seconds),
        )
