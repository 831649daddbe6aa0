"""Core data models for the coordination layer.

All dataclasses, enums, and type aliases shared by the agent,
coordinator and panel contexts. Single source of truth to avoid
circular imports.

Wire payloads use the camelCase keys of the message contract
(``tagId``, ``devicePixelRatio``); Python attributes stay snake_case.
"""
from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# Bumped whenever a kind is added, removed or changes payload shape.
PROTOCOL_VERSION = 2

COORDINATOR_ID = "coordinator"
PANEL_ID = "panel"
AGENT_PREFIX = "agent:"

GENERATED_ITEM_TYPE = "generated_analysis"
KEY_POINTS_ANALYSIS = "key_points"


def _make_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def agent_peer_id(tab_id: int | str) -> str:
    """Peer id of the page agent living in ``tab_id``."""
    return f"{AGENT_PREFIX}{tab_id}"


def tab_id_from_peer(peer_id: str) -> int | None:
    if not peer_id.startswith(AGENT_PREFIX):
        return None
    raw = peer_id[len(AGENT_PREFIX):]
    try:
        return int(raw)
    except ValueError:
        return None


class MessageKind(str, Enum):
    """Closed vocabulary of message kinds (see PROTOCOL_VERSION)."""
    # Coordinator/Panel -> Agent
    GET_PAGE_DATA = "GET_PAGE_DATA"
    GET_LAST_SELECTION = "GET_LAST_SELECTION"
    START_AREA_SELECTION = "START_AREA_SELECTION"
    # Agent -> Coordinator
    CAPTURE_AREA_FROM_CONTENT = "CAPTURE_AREA_FROM_CONTENT"
    # Panel -> Coordinator
    INITIATE_AREA_CAPTURE = "INITIATE_AREA_CAPTURE"
    SAVE_PAGE_CONTENT = "SAVE_PAGE_CONTENT"
    SAVE_SELECTION = "SAVE_SELECTION"
    CAPTURE_VISIBLE_TAB = "CAPTURE_VISIBLE_TAB"
    GET_ALL_SAVED_CONTENT = "GET_ALL_SAVED_CONTENT"
    GET_FILTERED_ITEMS_BY_TAG = "GET_FILTERED_ITEMS_BY_TAG"
    GET_ALL_TAGS = "GET_ALL_TAGS"
    GET_TAGS_FOR_ITEM = "GET_TAGS_FOR_ITEM"
    ADD_TAG_TO_ITEM = "ADD_TAG_TO_ITEM"
    REMOVE_TAG_FROM_ITEM = "REMOVE_TAG_FROM_ITEM"
    GET_KEY_POINTS_FOR_TAG = "GET_KEY_POINTS_FOR_TAG"
    GENERATE_PDF_REPORT_FOR_TAG = "GENERATE_PDF_REPORT_FOR_TAG"
    DELETE_ITEM = "DELETE_ITEM"
    # Coordinator -> Panel notifications
    REPORT_GENERATION_STATUS = "REPORT_GENERATION_STATUS"
    DATA_CHANGED = "DATA_CHANGED"


NOTIFICATION_KINDS: frozenset[MessageKind] = frozenset({
    MessageKind.REPORT_GENERATION_STATUS,
    MessageKind.DATA_CHANGED,
})


def parse_kind(value: MessageKind | str) -> MessageKind | None:
    """Resolve a raw kind string against the vocabulary, None if unknown."""
    if isinstance(value, MessageKind):
        return value
    try:
        return MessageKind(value)
    except ValueError:
        return None


def kind_name(value: MessageKind | str) -> str:
    return value.value if isinstance(value, MessageKind) else str(value)


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"

    @classmethod
    def coerce(cls, value: Any) -> Severity:
        try:
            return cls(value)
        except ValueError:
            return cls.INFO


@dataclass
class Message:
    """A message in transit between two contexts."""
    kind: MessageKind | str
    payload: Any = None
    message_id: str = field(default_factory=_make_id)
    source: str = ""
    target: str = ""
    # Set on requests; the response future is keyed by it.
    correlation_id: str | None = None
    # Set when this message carries the reply to ``correlation_id``.
    response: Response | None = None
    protocol_version: int = PROTOCOL_VERSION
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def is_request(self) -> bool:
        return self.correlation_id is not None and self.response is None

    @property
    def is_response(self) -> bool:
        return self.response is not None

    @property
    def is_notification(self) -> bool:
        return self.correlation_id is None


@dataclass(frozen=True)
class Response:
    """Uniform response envelope ``{success, payload?, error?}``."""
    success: bool
    payload: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, payload: Any = None) -> Response:
        return cls(success=True, payload=payload)

    @classmethod
    def fail(cls, error: str) -> Response:
        return cls(success=False, error=error or "Unknown error.")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.payload is not None:
            data["payload"] = self.payload
        if self.error is not None:
            data["error"] = self.error
        return data


# ── Geometry ──


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Rect:
    """Viewport rectangle, normalized so (x, y) is the top-left corner."""
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise ValueError(
                f"Rect dimensions must be non-negative, got "
                f"{self.width}x{self.height}"
            )

    @classmethod
    def from_points(cls, origin: Point, current: Point) -> Rect:
        return cls(
            x=min(origin.x, current.x),
            y=min(origin.y, current.y),
            width=abs(current.x - origin.x),
            height=abs(current.y - origin.y),
        )

    def is_smaller_than(self, min_size: float) -> bool:
        return self.width < min_size or self.height < min_size

    def scaled(self, ratio: float) -> Rect:
        """Device-pixel rectangle for a capture taken at ``ratio``."""
        return Rect(
            x=round(self.x * ratio),
            y=round(self.y * ratio),
            width=round(self.width * ratio),
            height=round(self.height * ratio),
        )

    def to_dict(self) -> dict[str, float]:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Rect:
        """Parse a wire rect. Raises ValueError on missing/non-numeric fields."""
        if not isinstance(data, dict):
            raise ValueError("Invalid rectangle data.")
        values: dict[str, float] = {}
        for key in ("x", "y", "width", "height"):
            raw = data.get(key)
            if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                raise ValueError("Invalid rectangle data.")
            if not math.isfinite(raw):
                raise ValueError("Invalid rectangle data.")
            values[key] = raw
        return cls(**values)


# ── Selection ──


class SelectionState(str, Enum):
    """Area selection states. See lifecycle.py for transition rules."""
    INACTIVE = "inactive"
    ARMED = "armed"
    DRAGGING = "dragging"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


@dataclass
class SelectionSession:
    """One drag cycle, owned by a single SelectionStateMachine."""
    session_id: str = field(default_factory=_make_id)
    origin: Point | None = None
    current: Point | None = None
    active: bool = True

    def rect(self) -> Rect | None:
        if self.origin is None or self.current is None:
            return None
        return Rect.from_points(self.origin, self.current)


# ── Task runs ──


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class StepResult:
    name: str
    success: bool
    error: str | None = None
    skipped: bool = False
    payload: Any = None


@dataclass
class TaskRun:
    """One invocation of a multi-step pipeline for a grouping key."""
    tag_id: int
    trigger: str = "report"
    run_id: str = field(default_factory=lambda: str(uuid.uuid4())[:12])
    steps: list[StepResult] = field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    error: str | None = None
    result: Any = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def record(self, step: StepResult) -> StepResult:
        self.steps.append(step)
        return step

    def step(self, name: str) -> StepResult | None:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def response(self) -> Response:
        if self.status == TaskStatus.SUCCEEDED:
            return Response.ok(self.result)
        return Response.fail(self.error or f"{self.trigger} {self.status.value}")

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()


# ── Persisted content (mirrored by the panel cache) ──


class ItemType(str, Enum):
    PAGE = "page"
    SELECTION = "selection"
    SCREENSHOT = "screenshot"
    PDF = "pdf"
    GENERATED_ANALYSIS = GENERATED_ITEM_TYPE


TEXT_ITEM_TYPES = frozenset({ItemType.PAGE, ItemType.SELECTION})


@dataclass
class Link:
    text: str
    url: str

    def to_dict(self) -> dict[str, str]:
        return {"text": self.text, "url": self.url}


@dataclass
class Tag:
    id: int
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Tag:
        return cls(id=int(data["id"]), name=str(data.get("name", "")))


_ITEM_WIRE_KEYS: dict[str, str] = {
    "id": "id",
    "type": "type",
    "title": "title",
    "url": "url",
    "content": "content",
    "content_type": "contentType",
    "html_content": "htmlContent",
    "lang": "pageLang",
    "description": "pageDescription",
    "keywords": "pageKeywords",
    "links": "links",
    "analysis_type": "analysisType",
    "source_tag_ids": "sourceTagIds",
    "source_item_ids": "sourceItemIds",
    "word_count": "wordCount",
    "reading_time_minutes": "readingTimeMinutes",
    "analysis": "analysis",
    "analysis_completed": "analysisCompleted",
    "analysis_failed": "analysisFailed",
    "file_size": "fileSize",
    "crop_rect": "cropRect",
    "created_at": "createdAt",
}


@dataclass
class ContentItem:
    """A persisted capture. ``type`` discriminates the payload fields."""
    id: int
    type: ItemType
    title: str = ""
    url: str | None = None
    content: str | None = None
    content_type: str | None = None
    html_content: str | None = None
    lang: str | None = None
    description: str | None = None
    keywords: str | None = None
    links: list[dict[str, str]] = field(default_factory=list)
    analysis_type: str | None = None
    source_tag_ids: list[int] = field(default_factory=list)
    source_item_ids: list[int] = field(default_factory=list)
    word_count: int | None = None
    reading_time_minutes: int | None = None
    analysis: dict[str, Any] | None = None
    analysis_completed: bool = False
    analysis_failed: bool = False
    file_size: int | None = None
    # Device-pixel crop applied to a screenshot of an area selection.
    crop_rect: dict[str, float] | None = None
    created_at: str = field(default_factory=lambda: _utcnow().isoformat())

    @property
    def is_text(self) -> bool:
        return self.type in TEXT_ITEM_TYPES

    def is_key_points(self, legacy_title_heuristic: bool = False) -> bool:
        """Whether this item is a key-points analysis.

        The ``analysis_type`` marker decides. Only items without any marker
        fall back to matching "key points" in the title or description.
        """
        if self.type != ItemType.GENERATED_ANALYSIS:
            return False
        if self.analysis_type is not None:
            return self.analysis_type == KEY_POINTS_ANALYSIS
        if not legacy_title_heuristic:
            return False
        haystack = f"{self.title or ''} {self.description or ''}".lower()
        return "key points" in haystack

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for attr, key in _ITEM_WIRE_KEYS.items():
            value = getattr(self, attr)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, list):
                value = list(value)
            data[key] = value
        return data

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> ContentItem:
        kwargs: dict[str, Any] = {}
        for attr, key in _ITEM_WIRE_KEYS.items():
            if key in data and data[key] is not None:
                kwargs[attr] = data[key]
        kwargs["id"] = int(data["id"])
        kwargs["type"] = ItemType(data["type"])
        return cls(**kwargs)


@dataclass
class PageData:
    """Metadata and content read from a rendered page."""
    url: str
    title: str = "Untitled Page"
    lang: str | None = None
    description: str | None = None
    keywords: str | None = None
    links: list[Link] = field(default_factory=list)
    text: str = ""
    html: str = ""

    def metadata(self) -> dict[str, Any]:
        """Context attached to captures; text and html are left out."""
        return {
            "url": self.url,
            "title": self.title,
            "lang": self.lang,
            "description": self.description,
            "keywords": self.keywords,
            "links": [link.to_dict() for link in self.links],
        }

    def to_wire(self) -> dict[str, Any]:
        data = self.metadata()
        data["text"] = self.text
        data["html"] = self.html
        return data


@dataclass
class StatusLine:
    """What the panel's status area currently shows."""
    message: str = ""
    severity: Severity = Severity.INFO
    persistent: bool = False
    posted_at: datetime = field(default_factory=_utcnow)


@dataclass
class ButtonState:
    label: str
    enabled: bool = True
    visible: bool = True
