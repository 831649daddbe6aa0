"""Page agent: the per-tab context embedded in a rendered page.

Answers page queries from the coordinator and panel, and owns the
area selection state machine. A committed selection becomes exactly
one CAPTURE_AREA_FROM_CONTENT request to the coordinator.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from .config import EngineConfig, timeout_or_none
from .errors import SelectionAlreadyActiveError
from .message_router import MessageRouter
from .models import (
    COORDINATOR_ID,
    Message,
    MessageKind,
    Rect,
    Response,
    SelectionState,
    agent_peer_id,
)
from .page import PageDocument
from .selection import SelectionEvent, SelectionStateMachine, SelectionSurface

logger = logging.getLogger(__name__)


class PageAgent:
    """Content agent for one tab."""

    def __init__(
        self,
        router: MessageRouter,
        tab_id: int,
        document: PageDocument,
        config: EngineConfig | None = None,
        surface: SelectionSurface | None = None,
    ) -> None:
        self.router = router
        self.tab_id = tab_id
        self.document = document
        self.config = config or EngineConfig()
        self.peer_id = agent_peer_id(tab_id)
        self.selection = SelectionStateMachine(
            min_size=self.config.min_selection_size,
            surface=surface,
            on_commit=self._on_commit,
        )
        self.last_capture_response: Response | None = None
        self._capture_task: asyncio.Task[Response] | None = None

    def start(self) -> None:
        self.router.register_peer(self.peer_id)
        self.router.register_handler(
            self.peer_id, MessageKind.GET_PAGE_DATA, self._handle_get_page_data,
        )
        self.router.register_handler(
            self.peer_id, MessageKind.GET_LAST_SELECTION, self._handle_get_last_selection,
        )
        self.router.register_handler(
            self.peer_id, MessageKind.START_AREA_SELECTION, self._handle_start_selection,
        )
        logger.info("Page agent started for tab %s (%s)", self.tab_id, self.document.url)

    def stop(self) -> None:
        self.selection.teardown()
        if self._capture_task is not None and not self._capture_task.done():
            self._capture_task.cancel()
        self.router.unregister_peer(self.peer_id)

    # ── Gestures ──

    def feed(self, event: SelectionEvent) -> SelectionState:
        """Deliver one pointer/key event from the page to the selection."""
        return self.selection.handle(event)

    async def wait_for_capture(self) -> Response | None:
        """Await the in-flight capture request, if any."""
        if self._capture_task is None:
            return None
        return await self._capture_task

    def _on_commit(self, rect: Rect) -> None:
        payload = self._capture_payload(rect)
        self._capture_task = asyncio.get_running_loop().create_task(
            self._send_capture(payload), name=f"capture:{self.peer_id}",
        )

    def _capture_payload(self, rect: Rect) -> dict[str, Any]:
        ratio = self.document.device_pixel_ratio or 1
        payload: dict[str, Any] = {
            "rect": rect.to_dict(),
            "devicePixelRatio": ratio,
        }
        payload.update(self.document.page_data().metadata())
        return payload

    async def _send_capture(self, payload: dict[str, Any]) -> Response:
        try:
            # Let the hidden overlay leave the screen before the viewport is grabbed.
            await asyncio.sleep(self.config.capture_delay_seconds)
            response = await self.router.request(
                self.peer_id,
                COORDINATOR_ID,
                MessageKind.CAPTURE_AREA_FROM_CONTENT,
                payload,
                timeout=timeout_or_none(self.config.request_timeout_seconds),
            )
            if response.success:
                logger.info("Area capture saved: %s", response.payload)
            else:
                logger.error("Coordinator failed capture request: %s", response.error)
            self.last_capture_response = response
            return response
        finally:
            self.selection.teardown()

    # ── Handlers ──

    async def _handle_get_page_data(self, message: Message) -> Response:
        return Response.ok(self.document.page_data().to_wire())

    async def _handle_get_last_selection(self, message: Message) -> Response:
        text = self.document.selection()
        if not text:
            return Response.fail("No text currently selected.")
        meta = self.document.page_data().metadata()
        meta.pop("links", None)
        meta["selectionText"] = text
        return Response.ok(meta)

    async def _handle_start_selection(self, message: Message) -> Response:
        try:
            self.selection.activate()
        except SelectionAlreadyActiveError as exc:
            logger.warning("START_AREA_SELECTION rejected on tab %s", self.tab_id)
            return Response.fail(str(exc))
        return Response.ok()
