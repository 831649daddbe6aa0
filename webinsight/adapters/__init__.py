"""Adapters package - bridge between the router and UI frontends."""
from __future__ import annotations

__all__ = [
    "EventBus",
    "TrafficEvent",
    "dict_to_event",
    "event_to_dict",
]

from webinsight.adapters.event_bus import EventBus
from webinsight.adapters.events import TrafficEvent, dict_to_event, event_to_dict
