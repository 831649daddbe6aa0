"""Background coordinator: the only context that talks to collaborators.

Every request kind in the catalog has one handler here. Handlers validate
their payload before touching a collaborator, finish their side effects
before returning, and post any REPORT_GENERATION_STATUS notifications
for a step before that step's Response. Mutations broadcast DATA_CHANGED
so panels reload.
"""
from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from typing import Any

from .capture import ScreenCapturer
from .config import EngineConfig, timeout_or_none
from .errors import (
    CollaboratorError,
    InferenceError,
    ItemNotFoundError,
    MessageRoutingError,
    ValidationError,
    WebInsightError,
)
from .inference import (
    IMAGE_PROMPTS,
    KEY_POINTS_PROMPT,
    InferenceClient,
    extract_text_from_result,
    try_parse_json,
)
from .message_router import NO_RECEIVER_ERROR, MessageRouter
from .models import (
    COORDINATOR_ID,
    KEY_POINTS_ANALYSIS,
    PANEL_ID,
    ContentItem,
    ItemType,
    Message,
    MessageKind,
    Rect,
    Response,
    Severity,
    Tag,
    agent_peer_id,
    tab_id_from_peer,
)
from .report import ReportRenderer
from .store import ContentStore

logger = logging.getLogger(__name__)

Handler = Callable[[Message], Awaitable[Response]]

TRUNCATION_MARKER = "\n\n[... CONTENT TRUNCATED ...]"
WORDS_PER_MINUTE = 200
PAGE_UNREACHABLE_ERROR = "Could not communicate with page. Reload page & retry."


def word_stats(text: str) -> tuple[int, int]:
    """(word count, reading minutes rounded up)."""
    words = len(text.split())
    return words, math.ceil(words / WORDS_PER_MINUTE)


def _payload(message: Message) -> dict[str, Any]:
    return message.payload if isinstance(message.payload, dict) else {}


def _require_int(payload: dict[str, Any], key: str, error: str) -> int:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(error)
    return value


class Coordinator:
    """Dispatches the message catalog to store, inference, renderer and capturer."""

    def __init__(
        self,
        router: MessageRouter,
        store: ContentStore,
        inference: InferenceClient,
        renderer: ReportRenderer,
        capturer: ScreenCapturer,
        config: EngineConfig | None = None,
    ) -> None:
        self.router = router
        self.store = store
        self.inference = inference
        self.renderer = renderer
        self.capturer = capturer
        self.config = config or EngineConfig()
        self.peer_id = COORDINATOR_ID
        self.active_tab_id: int | None = None
        self._analyses: set[asyncio.Task[Any]] = set()
        self._handlers: dict[MessageKind, Handler] = {
            MessageKind.SAVE_PAGE_CONTENT: self._save_page_content,
            MessageKind.SAVE_SELECTION: self._save_selection,
            MessageKind.CAPTURE_VISIBLE_TAB: self._capture_visible_tab,
            MessageKind.INITIATE_AREA_CAPTURE: self._initiate_area_capture,
            MessageKind.CAPTURE_AREA_FROM_CONTENT: self._capture_area,
            MessageKind.GET_ALL_SAVED_CONTENT: self._get_all_saved_content,
            MessageKind.GET_FILTERED_ITEMS_BY_TAG: self._get_filtered_items,
            MessageKind.GET_ALL_TAGS: self._get_all_tags,
            MessageKind.GET_TAGS_FOR_ITEM: self._get_tags_for_item,
            MessageKind.ADD_TAG_TO_ITEM: self._add_tag_to_item,
            MessageKind.REMOVE_TAG_FROM_ITEM: self._remove_tag_from_item,
            MessageKind.DELETE_ITEM: self._delete_item,
            MessageKind.GET_KEY_POINTS_FOR_TAG: self._get_key_points,
            MessageKind.GENERATE_PDF_REPORT_FOR_TAG: self._generate_report,
        }

    def start(self) -> None:
        self.router.register_peer(self.peer_id)
        for kind, handler in self._handlers.items():
            self.router.register_handler(self.peer_id, kind, self._guarded(kind, handler))
        logger.info("Coordinator started (%d handlers)", len(self._handlers))

    def stop(self) -> None:
        for task in list(self._analyses):
            task.cancel()
        self.router.unregister_peer(self.peer_id)

    def set_active_tab(self, tab_id: int | None) -> None:
        self.active_tab_id = tab_id

    def _guarded(self, kind: MessageKind, handler: Handler) -> Handler:
        """Turn expected failures into failure Responses; the router handles the rest."""

        async def run(message: Message) -> Response:
            try:
                return await handler(message)
            except ValidationError as exc:
                logger.warning("%s rejected: %s", kind.value, exc)
                return Response.fail(str(exc))
            except WebInsightError as exc:
                logger.error("%s failed: %s", kind.value, exc)
                return Response.fail(str(exc))

        return run

    # ── Notifications ──

    async def post_status(
        self,
        message: str,
        severity: Severity = Severity.INFO,
        tag_id: int | None = None,
    ) -> None:
        await self.router.broadcast(
            self.peer_id,
            MessageKind.REPORT_GENERATION_STATUS,
            {"message": message, "severity": severity.value, "tagId": tag_id},
            prefix=PANEL_ID,
        )

    async def notify_data_changed(self, reason: str, item_id: int | None = None) -> None:
        await self.router.broadcast(
            self.peer_id,
            MessageKind.DATA_CHANGED,
            {"reason": reason, "itemId": item_id},
            prefix=PANEL_ID,
        )

    # ── Shared helpers ──

    async def save_content(self, item: ContentItem, notify: bool = True) -> int:
        """Persist ``item`` with derived stats and announce the change."""
        if item.type in (ItemType.PAGE, ItemType.SELECTION, ItemType.GENERATED_ANALYSIS) \
                and isinstance(item.content, str) and item.content:
            item.word_count, item.reading_time_minutes = word_stats(item.content)
        elif item.type == ItemType.SCREENSHOT:
            item.word_count = None
            item.reading_time_minutes = None
        item_id = await self.store.add_item(item)
        logger.info("Item saved with id %d (type=%s, title=%r)", item_id, item.type.value, item.title)
        if notify:
            await self.notify_data_changed("saved", item_id)
        if item.type == ItemType.SCREENSHOT and self.config.analyze_screenshots \
                and isinstance(item.content, str) and item.content.startswith("data:image"):
            task = asyncio.create_task(
                self.analyze_screenshot(item_id, item.content), name=f"analysis-{item_id}",
            )
            self._analyses.add(task)
            task.add_done_callback(self._analysis_done)
        return item_id

    async def analyze_screenshot(self, item_id: int, image: str) -> dict[str, Any]:
        """Run the image prompts against a saved screenshot and store the results.

        Prompts fail independently. Whatever came back is kept, and any
        failure marks the item ``analysis_failed``. Answers saying there is
        no diagram (or no webpage layout) are stored as None.
        """
        logger.info("[%d] Starting screenshot analysis", item_id)
        results: dict[str, Any] = {}
        succeeded = True
        try:
            response = await self.inference.analyze_image(image, IMAGE_PROMPTS["description"])
            results["description"] = extract_text_from_result(response)
        except InferenceError as exc:
            logger.error("[%d] Description analysis failed: %s", item_id, exc)
            results["descriptionError"] = str(exc)
            succeeded = False

        for key, error_key, prompt, negative in (
            ("diagramData", "diagramError", "diagram_chart", "contains_diagram"),
            ("layout", "layoutError", "layout", "is_webpage_layout"),
        ):
            try:
                response = await self.inference.analyze_image(image, IMAGE_PROMPTS[prompt])
            except InferenceError as exc:
                logger.error("[%d] %s analysis failed: %s", item_id, key, exc)
                results[error_key] = str(exc)
                succeeded = False
                continue
            text = extract_text_from_result(response)
            if not text:
                results[key] = {"error": "No text content received."}
                succeeded = False
                continue
            parsed = try_parse_json(text, key)
            if isinstance(parsed, dict) and parsed.get(negative) is False:
                parsed = None
            results[key] = parsed

        try:
            await self.store.update_item(
                item_id,
                analysis=results,
                analysis_completed=True,
                analysis_failed=not succeeded,
            )
        except ItemNotFoundError:
            logger.warning("[%d] Screenshot deleted before analysis finished", item_id)
            return results
        logger.info("[%d] Screenshot analysis stored (failed=%s)", item_id, not succeeded)
        await self.notify_data_changed("analyzed", item_id)
        return results

    def _analysis_done(self, task: asyncio.Task[Any]) -> None:
        self._analyses.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Screenshot analysis task failed: %r", exc)

    async def wait_for_analyses(self) -> None:
        """Wait until every running screenshot analysis has finished."""
        while self._analyses:
            await asyncio.gather(*list(self._analyses), return_exceptions=True)

    def _resolve_tab(self, payload: dict[str, Any]) -> int:
        if "tabId" in payload and payload["tabId"] is not None:
            return _require_int(payload, "tabId", "Invalid tabId.")
        if self.active_tab_id is None:
            raise ValidationError("Could not find active tab.")
        return self.active_tab_id

    async def _ask_agent(self, tab_id: int, kind: MessageKind) -> dict[str, Any]:
        response = await self.router.request(
            self.peer_id,
            agent_peer_id(tab_id),
            kind,
            timeout=timeout_or_none(self.config.request_timeout_seconds),
        )
        if not response.success:
            if response.error == NO_RECEIVER_ERROR:
                raise MessageRoutingError(
                    kind.value, agent_peer_id(tab_id), PAGE_UNREACHABLE_ERROR,
                )
            raise CollaboratorError(response.error or "Page agent failed.")
        return response.payload if isinstance(response.payload, dict) else {}

    # ── Capture handlers ──

    async def _save_page_content(self, message: Message) -> Response:
        tab_id = self._resolve_tab(_payload(message))
        page = await self._ask_agent(tab_id, MessageKind.GET_PAGE_DATA)
        item_id = await self.save_content(ContentItem(
            id=0,
            type=ItemType.PAGE,
            title=page.get("title") or "Untitled Page",
            url=page.get("url"),
            content=page.get("text") or "",
            html_content=page.get("html"),
            lang=page.get("lang"),
            description=page.get("description"),
            keywords=page.get("keywords"),
            links=list(page.get("links") or []),
        ))
        return Response.ok({"id": item_id})

    async def _save_selection(self, message: Message) -> Response:
        tab_id = self._resolve_tab(_payload(message))
        selection = await self._ask_agent(tab_id, MessageKind.GET_LAST_SELECTION)
        text = (selection.get("selectionText") or "").strip()
        if not text:
            raise ValidationError("No text selected.")
        item_id = await self.save_content(ContentItem(
            id=0,
            type=ItemType.SELECTION,
            title=f"Selection from: {selection.get('title') or 'Untitled Page'}",
            url=selection.get("url"),
            content=text,
            lang=selection.get("lang"),
            description=selection.get("description"),
            keywords=selection.get("keywords"),
        ))
        return Response.ok({"id": item_id})

    async def _capture_visible_tab(self, message: Message) -> Response:
        tab_id = self._resolve_tab(_payload(message))
        try:
            page = await self._ask_agent(tab_id, MessageKind.GET_PAGE_DATA)
        except WebInsightError as exc:
            logger.warning("No page metadata for tab %s: %s", tab_id, exc)
            page = {}
        image = await self.capturer.capture_visible(tab_id)
        if not image:
            raise CollaboratorError("Capture empty.")
        item_id = await self.save_content(ContentItem(
            id=0,
            type=ItemType.SCREENSHOT,
            title=f"Screenshot of {page.get('title') or 'Untitled Page'}",
            url=page.get("url"),
            content=image,
            content_type="image/png",
        ))
        return Response.ok({"id": item_id})

    async def _initiate_area_capture(self, message: Message) -> Response:
        tab_id = self._resolve_tab(_payload(message))
        logger.info("Sending START_AREA_SELECTION to tab %s", tab_id)
        await self._ask_agent(tab_id, MessageKind.START_AREA_SELECTION)
        return Response.ok({"message": "Area selection started."})

    async def _capture_area(self, message: Message) -> Response:
        tab_id = tab_id_from_peer(message.source)
        if tab_id is None:
            raise ValidationError("Missing sender tab info.")
        payload = _payload(message)
        try:
            rect = Rect.from_dict(payload.get("rect"))
        except ValueError as exc:
            raise ValidationError("Invalid rectangle data.") from exc
        ratio = payload.get("devicePixelRatio")
        if isinstance(ratio, bool) or not isinstance(ratio, (int, float)) or ratio <= 0:
            logger.warning("Invalid device pixel ratio %r, defaulting to 1", ratio)
            ratio = 1
        logger.info("Capture request for area %s on tab %s", rect.to_dict(), tab_id)

        image = await self.capturer.capture_visible(tab_id)
        if not image:
            raise CollaboratorError("Capture empty.")
        crop = rect.scaled(ratio)
        cropped = await self.capturer.crop(image, crop)
        title = payload.get("title")
        item_id = await self.save_content(ContentItem(
            id=0,
            type=ItemType.SCREENSHOT,
            title=f"Area from: {title}" if title else "Area Screenshot",
            url=payload.get("url"),
            content=cropped,
            content_type="image/png",
            lang=payload.get("lang"),
            description=payload.get("description"),
            keywords=payload.get("keywords"),
            links=list(payload.get("links") or []),
            crop_rect=crop.to_dict(),
        ))
        return Response.ok({"id": item_id})

    # ── Query handlers ──

    async def _get_all_saved_content(self, message: Message) -> Response:
        try:
            items = await self.store.get_all_items()
        except CollaboratorError as exc:
            return Response.fail(f"Failed retrieve items: {exc}")
        return Response.ok([item.to_wire() for item in items])

    async def _get_filtered_items(self, message: Message) -> Response:
        tag_id = _require_int(_payload(message), "tagId", "Invalid tagId for filtering.")
        items = await self._items_for_tag(tag_id)
        return Response.ok([item.to_wire() for item in items])

    async def _get_all_tags(self, message: Message) -> Response:
        tags = await self.store.get_all_tags()
        return Response.ok([tag.to_dict() for tag in tags])

    async def _get_tags_for_item(self, message: Message) -> Response:
        content_id = _require_int(_payload(message), "contentId", "Invalid contentId.")
        tag_ids = await self.store.get_tag_ids_for_item(content_id)
        tags = await self.store.get_tags_by_ids(tag_ids) if tag_ids else []
        return Response.ok([tag.to_dict() for tag in tags])

    # ── Mutation handlers ──

    async def _add_tag_to_item(self, message: Message) -> Response:
        payload = _payload(message)
        content_id = payload.get("contentId")
        tag_name = payload.get("tagName")
        tag_id = payload.get("tagId")
        if isinstance(content_id, bool) or not isinstance(content_id, int):
            raise ValidationError("Invalid contentId or tagName.")
        if isinstance(tag_name, str) and tag_name.strip():
            tag_id = await self.store.add_tag(tag_name.strip())
        elif isinstance(tag_id, bool) or not isinstance(tag_id, int):
            raise ValidationError("Invalid contentId or tagName.")
        await self.store.link_tag(content_id, tag_id)
        await self.notify_data_changed("tagged", content_id)
        return Response.ok({"tagId": tag_id})

    async def _remove_tag_from_item(self, message: Message) -> Response:
        payload = _payload(message)
        error = "Invalid contentId or tagId."
        content_id = _require_int(payload, "contentId", error)
        tag_id = _require_int(payload, "tagId", error)
        await self.store.unlink_tag(content_id, tag_id)
        await self.notify_data_changed("untagged", content_id)
        return Response.ok()

    async def _delete_item(self, message: Message) -> Response:
        item_id = _require_int(_payload(message), "id", "Invalid item ID.")
        await self.store.delete_item(item_id)
        await self.notify_data_changed("deleted", item_id)
        return Response.ok()

    # ── Key points ──

    async def _get_key_points(self, message: Message) -> Response:
        tag_id = _require_int(
            _payload(message), "tagId", "Invalid tagId provided for key points."
        )
        return Response.ok(await self.generate_key_points(tag_id))

    async def _tag(self, tag_id: int) -> Tag:
        tags = await self.store.get_tags_by_ids([tag_id])
        if tags and tags[0].name:
            return tags[0]
        logger.warning("Could not fetch name for tag id %d", tag_id)
        return Tag(id=tag_id, name=f"Tag {tag_id}")

    async def _items_for_tag(self, tag_id: int) -> list[ContentItem]:
        item_ids = await self.store.get_item_ids_for_tag(tag_id)
        return await self.store.get_items_by_ids(item_ids) if item_ids else []

    async def generate_key_points(self, tag_id: int) -> dict[str, Any]:
        """Summarize a tag's text items and save the result as a new item.

        Returns ``{newId, keyPoints, sourceInfo}``. Raises ValidationError
        when the tag has nothing to summarize, InferenceError when the
        model returns nothing usable.
        """
        tag = await self._tag(tag_id)
        items = await self._items_for_tag(tag_id)
        if not items:
            raise ValidationError("No content items found for this tag.")

        eligible = [i for i in items if i.is_text and i.content]
        limit = self.config.max_items_for_summary
        text_items = eligible[:limit]
        if not text_items:
            raise ValidationError("No text content found for this tag (only screenshots?).")

        sources = len({i.url for i in text_items if i.url})
        source_info = (
            f"Generated from {len(text_items)} item(s) (from {sources} unique "
            f"source{'s' if sources != 1 else ''}) tagged \"{tag.name}\" (ID {tag_id})."
        )
        excluded = len(items) - len(eligible)
        if excluded:
            source_info += f" (Note: {excluded} non-text items excluded.)"
        if len(eligible) > limit:
            source_info += f" (Note: Limited to first {limit} text items.)"

        combined = "".join(
            f"--- Item {i.id} ({i.title or 'No Title'}) ---\n{i.content}\n\n"
            for i in text_items
        )
        if len(combined) > self.config.max_summary_chars:
            combined = combined[:self.config.max_summary_chars] + TRUNCATION_MARKER
            source_info += " (Note: Input text was truncated.)"

        await self.post_status(
            f'Analyzing {len(text_items)} item(s) for tag "{tag.name}"...',
            Severity.INFO, tag_id,
        )
        logger.info("Requesting key points for tag %d (%d chars)", tag_id, len(combined))
        result = await self.inference.analyze_text(combined, KEY_POINTS_PROMPT)
        key_points = extract_text_from_result(result)
        if not key_points:
            raise InferenceError("AI analysis did not return usable text content.")

        new_id = await self.save_content(ContentItem(
            id=0,
            type=ItemType.GENERATED_ANALYSIS,
            analysis_type=KEY_POINTS_ANALYSIS,
            title=f'Key Points for Tag: "{tag.name}"',
            content=key_points,
            source_tag_ids=[tag_id],
            source_item_ids=[i.id for i in text_items],
            analysis_completed=True,
        ), notify=False)
        # Linked so later lookups by tag find the analysis.
        await self.store.link_tag(new_id, tag_id)
        await self.notify_data_changed("saved", new_id)
        logger.info("Key points for tag %d saved as item %d", tag_id, new_id)
        return {"newId": new_id, "keyPoints": key_points, "sourceInfo": source_info}

    # ── Report ──

    async def _generate_report(self, message: Message) -> Response:
        payload = _payload(message)
        tag_id = _require_int(payload, "tagId", "Invalid tagId for report.")
        options = payload.get("options")
        if options is None:
            options = {}
        if not isinstance(options, dict):
            raise ValidationError("Invalid report options.")

        tag = await self._tag(tag_id)
        await self.post_status(f'Collecting items for "{tag.name}"...', Severity.INFO, tag_id)
        items = await self._items_for_tag(tag_id)
        if not items:
            raise ValidationError("No content items found for this tag.")

        key_points = await self._report_key_points(items, options)
        await self.post_status(
            f"Rendering report from {len(items)} item(s)...", Severity.INFO, tag_id,
        )
        try:
            filename = await self.renderer.render(tag, items, key_points, options)
        except OSError as exc:
            raise CollaboratorError(f"Report rendering failed: {exc}") from exc
        return Response.ok({"filename": filename})

    async def _report_key_points(
        self,
        items: list[ContentItem],
        options: dict[str, Any],
    ) -> ContentItem | None:
        if not options.get("includeKeyPoints", True):
            return None
        wanted = options.get("keyPointsItemId")
        if isinstance(wanted, int) and not isinstance(wanted, bool):
            for item in items:
                if item.id == wanted:
                    return item
            try:
                return await self.store.get_item(wanted)
            except CollaboratorError:
                logger.warning("Key points item %s not found, continuing without", wanted)
                return None
        candidates = [
            i for i in items
            if i.is_key_points(self.config.report.legacy_title_heuristic)
        ]
        return max(candidates, key=lambda i: i.id) if candidates else None
