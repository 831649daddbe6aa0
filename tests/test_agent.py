from __future__ import annotations

import asyncio

import pytest

from webinsight.engine.agent import PageAgent
from webinsight.engine.config import EngineConfig
from webinsight.engine.message_router import MessageRouter
from webinsight.engine.models import Message, MessageKind, Response, SelectionState
from webinsight.engine.page import PageDocument
from webinsight.engine.selection import KeyDown, PointerDown, PointerMove, PointerUp

HTML = """<html lang="de"><head><title> Seite </title>
<meta name="description" content="Beschreibung">
</head><body><p>Hallo Welt</p>
<a href="/impressum">Impressum</a><a href="#oben">Oben</a>
<a href="javascript:void(0)">JS</a></body></html>"""


async def _setup(ratio: float = 1.0):
    router = MessageRouter()
    router.register_peer("coordinator")
    captures: list[Message] = []

    async def capture(message: Message) -> Response:
        captures.append(message)
        return Response.ok({"id": 42})

    router.register_handler("coordinator", MessageKind.CAPTURE_AREA_FROM_CONTENT, capture)
    document = PageDocument("https://example.de/start", HTML, device_pixel_ratio=ratio)
    agent = PageAgent(router, 3, document, EngineConfig(capture_delay_seconds=0))
    agent.start()
    return router, agent, captures


@pytest.mark.asyncio
async def test_page_data_is_served_over_the_router() -> None:
    router, agent, _ = await _setup()

    response = await router.request("coordinator", "agent:3", MessageKind.GET_PAGE_DATA)

    assert response.success is True
    page = response.payload
    assert page["title"] == "Seite"
    assert page["lang"] == "de"
    assert page["description"] == "Beschreibung"
    assert page["links"] == [{"text": "Impressum", "url": "https://example.de/impressum"}]
    assert "Hallo Welt" in page["text"]
    await router.close()


@pytest.mark.asyncio
async def test_last_selection_requires_selected_text() -> None:
    router, agent, _ = await _setup()

    empty = await router.request("coordinator", "agent:3", MessageKind.GET_LAST_SELECTION)
    agent.document.select("  Hallo  ")
    selected = await router.request("coordinator", "agent:3", MessageKind.GET_LAST_SELECTION)

    assert empty.success is False
    assert empty.error == "No text currently selected."
    assert selected.payload["selectionText"] == "Hallo"
    assert selected.payload["title"] == "Seite"
    assert "links" not in selected.payload
    await router.close()


@pytest.mark.asyncio
async def test_second_start_while_active_fails() -> None:
    router, agent, _ = await _setup()

    first = await router.request("coordinator", "agent:3", MessageKind.START_AREA_SELECTION)
    second = await router.request("coordinator", "agent:3", MessageKind.START_AREA_SELECTION)

    assert first.success is True
    assert second.success is False
    assert second.error == "Area selection is already active."
    assert agent.selection.state == SelectionState.ARMED
    await router.close()


@pytest.mark.asyncio
async def test_committed_drag_sends_exactly_one_capture_request() -> None:
    router, agent, captures = await _setup(ratio=2.0)
    await router.request("coordinator", "agent:3", MessageKind.START_AREA_SELECTION)

    agent.feed(PointerDown(100, 100))
    agent.feed(PointerMove(60, 60))
    assert agent.feed(PointerUp(40, 30)) == SelectionState.COMMITTED
    response = await agent.wait_for_capture()

    assert response.success is True
    assert len(captures) == 1
    message = captures[0]
    assert message.source == "agent:3"
    assert message.payload["rect"] == {"x": 40, "y": 30, "width": 60, "height": 70}
    assert message.payload["devicePixelRatio"] == 2.0
    assert message.payload["title"] == "Seite"
    assert agent.selection.state == SelectionState.INACTIVE
    assert agent.last_capture_response == response
    await router.close()


@pytest.mark.asyncio
async def test_cancelled_selections_send_nothing() -> None:
    router, agent, captures = await _setup()

    await router.request("coordinator", "agent:3", MessageKind.START_AREA_SELECTION)
    agent.feed(PointerDown(10, 10))
    agent.feed(PointerUp(12, 12))
    await router.request("coordinator", "agent:3", MessageKind.START_AREA_SELECTION)
    agent.feed(PointerDown(10, 10))
    agent.feed(KeyDown("Escape"))
    await asyncio.sleep(0.01)

    assert captures == []
    assert await agent.wait_for_capture() is None
    assert agent.selection.state == SelectionState.INACTIVE
    await router.close()


@pytest.mark.asyncio
async def test_failed_capture_still_tears_down() -> None:
    router = MessageRouter()
    router.register_peer("coordinator")
    agent = PageAgent(
        router, 5, PageDocument("https://x.test/", "<html></html>"),
        EngineConfig(capture_delay_seconds=0),
    )
    agent.start()
    await router.request("coordinator", "agent:5", MessageKind.START_AREA_SELECTION)

    agent.feed(PointerDown(0, 0))
    agent.feed(PointerUp(50, 50))
    response = await agent.wait_for_capture()

    assert response.success is False
    assert response.error == "Unhandled message kind in coordinator: CAPTURE_AREA_FROM_CONTENT"
    assert agent.selection.state == SelectionState.INACTIVE
    await router.close()
