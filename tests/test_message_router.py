from __future__ import annotations

import asyncio

import pytest

from webinsight.engine.message_router import NO_RECEIVER_ERROR, MessageRouter, kind_is
from webinsight.engine.models import Message, MessageKind, Response


def _router(*peers: str) -> MessageRouter:
    router = MessageRouter()
    for peer in peers:
        router.register_peer(peer)
    return router


@pytest.mark.asyncio
async def test_request_resolves_with_handler_response() -> None:
    router = _router("panel", "coordinator")

    async def handler(message: Message) -> Response:
        return Response.ok({"echo": message.payload["value"], "from": message.source})

    router.register_handler("coordinator", MessageKind.GET_ALL_TAGS, handler)
    response = await router.request("panel", "coordinator", MessageKind.GET_ALL_TAGS, {"value": 7})

    assert response.success is True
    assert response.payload == {"echo": 7, "from": "panel"}
    assert router.metrics.requests_sent == 1
    assert router.metrics.responses_delivered == 1
    assert router.pending_count == 0
    await router.close()


@pytest.mark.asyncio
async def test_concurrent_requests_match_by_correlation_not_order() -> None:
    router = _router("panel", "coordinator")
    release_first = asyncio.Event()

    async def handler(message: Message) -> Response:
        if message.payload["n"] == 1:
            await release_first.wait()
        return Response.ok(message.payload["n"])

    router.register_handler("coordinator", MessageKind.GET_ALL_TAGS, handler)
    first = asyncio.create_task(
        router.request("panel", "coordinator", MessageKind.GET_ALL_TAGS, {"n": 1})
    )
    second = await router.request("panel", "coordinator", MessageKind.GET_ALL_TAGS, {"n": 2})
    release_first.set()

    assert second.payload == 2
    assert (await first).payload == 1
    await router.close()


@pytest.mark.asyncio
async def test_raising_handler_becomes_failure_response() -> None:
    router = _router("panel", "coordinator")

    async def handler(message: Message) -> Response:
        raise RuntimeError("store exploded")

    router.register_handler("coordinator", MessageKind.DELETE_ITEM, handler)
    response = await router.request("panel", "coordinator", MessageKind.DELETE_ITEM, {"id": 1})

    assert response.success is False
    assert response.error == "store exploded"
    assert router.metrics.handler_failures == 1
    await router.close()


@pytest.mark.asyncio
async def test_unknown_kind_and_unhandled_kind_fail() -> None:
    router = _router("panel", "coordinator")

    unknown = await router.request("panel", "coordinator", "MAKE_COFFEE")
    unhandled = await router.request("panel", "coordinator", MessageKind.GET_ALL_TAGS)

    assert unknown.success is False
    assert unknown.error == "Unrecognized message kind: MAKE_COFFEE"
    assert unhandled.success is False
    assert unhandled.error == "Unhandled message kind in coordinator: GET_ALL_TAGS"
    assert router.metrics.unknown_kinds == 2
    await router.close()


@pytest.mark.asyncio
async def test_missing_target_and_unregistered_source() -> None:
    router = _router("panel")

    no_target = await router.request("panel", "agent:9", MessageKind.GET_PAGE_DATA)
    no_source = await router.request("ghost", "panel", MessageKind.GET_PAGE_DATA)

    assert no_target.error == NO_RECEIVER_ERROR
    assert no_source.error == "Source ghost is not registered."
    assert router.metrics.transport_failures == 2
    assert router.metrics.requests_sent == 0
    await router.close()


@pytest.mark.asyncio
async def test_timeout_then_late_response_is_dropped() -> None:
    router = _router("panel", "coordinator")
    release = asyncio.Event()

    async def slow(message: Message) -> Response:
        await release.wait()
        return Response.ok("too late")

    router.register_handler("coordinator", MessageKind.GET_ALL_TAGS, slow)
    response = await router.request(
        "panel", "coordinator", MessageKind.GET_ALL_TAGS, timeout=0.05,
    )

    assert response.success is False
    assert response.error == "timeout after 0.05s"
    assert router.metrics.request_timeouts == 1
    assert router.pending_count == 0

    release.set()
    await asyncio.sleep(0.02)
    assert router.metrics.responses_dropped == 1
    assert router.metrics.responses_delivered == 0
    await router.close()


@pytest.mark.asyncio
async def test_notification_posted_before_reply_is_seen_first() -> None:
    router = _router("panel", "coordinator")
    seen: list[str] = []

    async def handler(message: Message) -> Response:
        await router.post(
            "coordinator", "panel", MessageKind.REPORT_GENERATION_STATUS,
            {"message": "working"},
        )
        return Response.ok()

    router.register_handler("coordinator", MessageKind.GENERATE_PDF_REPORT_FOR_TAG, handler)
    router.on_receive(
        "panel",
        kind_is(MessageKind.REPORT_GENERATION_STATUS),
        lambda message: seen.append(message.payload["message"]),
    )

    response = await router.request(
        "panel", "coordinator", MessageKind.GENERATE_PDF_REPORT_FOR_TAG, {"tagId": 1},
    )
    seen.append("response")

    assert response.success is True
    assert seen == ["working", "response"]
    await router.close()


@pytest.mark.asyncio
async def test_payloads_are_copied_across_the_boundary() -> None:
    router = _router("panel", "coordinator")
    original = {"items": [1, 2]}

    async def handler(message: Message) -> Response:
        message.payload["items"].append(3)
        return Response.ok(message.payload)

    router.register_handler("coordinator", MessageKind.GET_ALL_TAGS, handler)
    response = await router.request("panel", "coordinator", MessageKind.GET_ALL_TAGS, original)

    assert original == {"items": [1, 2]}
    assert response.payload == {"items": [1, 2, 3]}
    await router.close()


@pytest.mark.asyncio
async def test_unserializable_payload_fails_without_sending() -> None:
    router = _router("panel", "coordinator")

    response = await router.request(
        "panel", "coordinator", MessageKind.GET_ALL_TAGS, {"when": object()},
    )

    assert response.success is False
    assert "GET_ALL_TAGS is not serializable" in response.error
    assert router.metrics.requests_sent == 0
    await router.close()


@pytest.mark.asyncio
async def test_close_fails_requests_in_flight() -> None:
    router = _router("panel", "coordinator")
    never = asyncio.Event()

    async def stuck(message: Message) -> Response:
        await never.wait()
        return Response.ok()

    router.register_handler("coordinator", MessageKind.GET_ALL_TAGS, stuck)
    pending = asyncio.create_task(
        router.request("panel", "coordinator", MessageKind.GET_ALL_TAGS)
    )
    await asyncio.sleep(0.01)
    await router.close()

    response = await pending
    assert response.success is False
    assert response.error == "Transport closed."

    after = await router.request("panel", "coordinator", MessageKind.GET_ALL_TAGS)
    assert after.error == "Transport closed."


@pytest.mark.asyncio
async def test_unregistering_target_fails_its_requests() -> None:
    router = _router("coordinator", "agent:1")
    never = asyncio.Event()

    async def stuck(message: Message) -> Response:
        await never.wait()
        return Response.ok()

    router.register_handler("agent:1", MessageKind.GET_PAGE_DATA, stuck)
    pending = asyncio.create_task(
        router.request("coordinator", "agent:1", MessageKind.GET_PAGE_DATA)
    )
    await asyncio.sleep(0.01)
    router.unregister_peer("agent:1")

    response = await pending
    assert response.success is False
    assert response.error == "Peer agent:1 disconnected before responding."
    assert not router.is_registered("agent:1")
    await router.close()


@pytest.mark.asyncio
async def test_broadcast_respects_prefix_and_skips_source() -> None:
    router = _router("coordinator", "panel", "panel:2", "agent:1")
    received: list[str] = []
    for peer in ("panel", "panel:2", "agent:1"):
        router.on_receive(
            peer, kind_is(MessageKind.DATA_CHANGED),
            lambda message, peer=peer: received.append(peer),
        )

    delivered = await router.broadcast(
        "coordinator", MessageKind.DATA_CHANGED, {"reason": "saved"}, prefix="panel",
    )
    await asyncio.sleep(0.01)

    assert delivered == 2
    assert sorted(received) == ["panel", "panel:2"]
    await router.close()


@pytest.mark.asyncio
async def test_cancelled_subscription_stops_receiving() -> None:
    router = _router("coordinator", "panel")
    received: list[Message] = []
    sub = router.on_receive("panel", kind_is(MessageKind.DATA_CHANGED), received.append)

    await router.post("coordinator", "panel", MessageKind.DATA_CHANGED, {"n": 1})
    await asyncio.sleep(0.01)
    sub.cancel()
    await router.post("coordinator", "panel", MessageKind.DATA_CHANGED, {"n": 2})
    await asyncio.sleep(0.01)

    assert [m.payload["n"] for m in received] == [1]
    assert received[0].is_notification
    assert sub.active is False
    await router.close()


@pytest.mark.asyncio
async def test_post_to_missing_peer_is_dropped() -> None:
    router = _router("coordinator")

    queued = await router.post("coordinator", "panel", MessageKind.DATA_CHANGED)

    assert queued is False
    assert router.metrics.notifications_dropped == 1
    await router.close()
