from __future__ import annotations

import asyncio

import pytest

from webinsight.adapters.event_bus import EventBus
from webinsight.adapters.events import (
    NotificationPosted,
    RequestSent,
    ResponseDelivered,
    TrafficEvent,
    dict_to_event,
    event_to_dict,
)
from webinsight.engine.message_router import MessageRouter
from webinsight.engine.models import Message, MessageKind, Response


def test_dict_to_event_picks_type_and_ignores_extra_keys() -> None:
    event = dict_to_event({
        "event": "response_delivered", "source": "coordinator", "target": "panel",
        "kind": "DELETE_ITEM", "success": False, "error": "nope", "extra": 1,
    })

    assert isinstance(event, ResponseDelivered)
    assert event.success is False
    assert event.error == "nope"

    unknown = dict_to_event({"event": "mystery", "kind": "X"})
    assert type(unknown) is TrafficEvent
    assert unknown.event_type == "mystery"


def test_event_to_dict_drops_none_fields() -> None:
    data = event_to_dict(ResponseDelivered(source="a", target="b", kind="K"))

    assert data["event"] == "response_delivered"
    assert "error" not in data
    assert dict_to_event(data) == ResponseDelivered(source="a", target="b", kind="K")


@pytest.mark.asyncio
async def test_router_traffic_reaches_the_bus() -> None:
    bus = EventBus()
    router = MessageRouter(event_callback=bus.make_callback())
    router.register_peer("panel")
    router.register_peer("coordinator")

    async def handler(message: Message) -> Response:
        return Response.ok([])

    router.register_handler("coordinator", MessageKind.GET_ALL_TAGS, handler)
    await router.request("panel", "coordinator", MessageKind.GET_ALL_TAGS)
    await router.post("coordinator", "panel", MessageKind.DATA_CHANGED, {"reason": "saved"})
    await asyncio.sleep(0.01)

    events = []
    async for event in bus.consume():
        events.append(event)
        if len(events) == 3:
            break
    bus.close()

    by_type = {type(event): event for event in events}
    assert set(by_type) == {RequestSent, ResponseDelivered, NotificationPosted}
    assert events[0] == RequestSent(source="panel", target="coordinator", kind="GET_ALL_TAGS")
    assert by_type[ResponseDelivered].success is True
    assert by_type[NotificationPosted].target == "panel"
    await router.close()


@pytest.mark.asyncio
async def test_closed_bus_drops_events() -> None:
    bus = EventBus()
    bus.close()

    await bus.emit(RequestSent(source="a", target="b", kind="K"))

    assert bus.pending == 0
