"""Event types emitted by the message router.

Each event corresponds to a router callback dict, parsed into a typed
dataclass for safe consumption by the TUI traffic log.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class TrafficEvent:
    """Base event for one hop through the router."""
    event_type: str = ""
    source: str = ""
    target: str = ""
    kind: str = ""


@dataclass
class RequestSent(TrafficEvent):
    event_type: str = "request_sent"


@dataclass
class ResponseDelivered(TrafficEvent):
    event_type: str = "response_delivered"
    success: bool = True
    error: str | None = None


@dataclass
class NotificationPosted(TrafficEvent):
    event_type: str = "notification_posted"


_EVENT_MAP: dict[str, type[TrafficEvent]] = {
    "request_sent": RequestSent,
    "response_delivered": ResponseDelivered,
    "notification_posted": NotificationPosted,
}


def event_to_dict(event: TrafficEvent) -> dict[str, Any]:
    """Convert a typed event to the router's callback dict shape."""
    d: dict[str, Any] = {}
    for f in event.__dataclass_fields__:
        val = getattr(event, f)
        if val is not None:
            d[f] = val
    d["event"] = d.pop("event_type", "")
    return d


def dict_to_event(data: dict[str, Any]) -> TrafficEvent:
    """Convert a router callback dict to a typed event."""
    event_type = data.get("event", "")
    cls = _EVENT_MAP.get(event_type, TrafficEvent)
    valid_fields = set(cls.__dataclass_fields__)
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    if "event_type" not in filtered:
        filtered["event_type"] = event_type
    return cls(**filtered)
