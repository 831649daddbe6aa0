"""Message router connecting the agent, coordinator and panel contexts.

Each registered peer gets an asyncio.Queue of inbound messages and a
single dispatch task consuming it. Two delivery patterns:

* request(): the caller awaits exactly one Response, matched by a
  correlation id (never by order or value). The reply travels back
  through the requester's own queue, so any notification the handler
  posted before replying is dispatched before the Response resolves.
* post()/broadcast(): fire-and-forget notifications delivered to zero
  or more subscriptions registered with on_receive().

Contexts share no memory: every payload is copied through a JSON round
trip on delivery. Anything that goes wrong in transit (unknown peer,
full queue, unserializable payload, handler exception, peer torn down
mid-request, timeout) resolves the caller with a failure Response
instead of raising.
"""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .config import EventCallback, fire_event
from .errors import PayloadSerializationError
from .models import Message, MessageKind, Response, kind_name, parse_kind

logger = logging.getLogger(__name__)

RequestHandler = Callable[[Message], Awaitable[Response]]
NotificationCallback = Callable[[Message], Any]
Predicate = Callable[[Message], bool]

# Chrome's wording for a tab without a content script; callers match on it.
NO_RECEIVER_ERROR = "Could not establish connection. Receiving end does not exist."


@dataclass
class RouterMetrics:
    """Lightweight counters for observability."""

    requests_sent: int = 0
    responses_delivered: int = 0
    responses_dropped: int = 0
    notifications_posted: int = 0
    notifications_dropped: int = 0
    transport_failures: int = 0
    handler_failures: int = 0
    unknown_kinds: int = 0
    request_timeouts: int = 0

    def snapshot(self) -> dict[str, int]:
        """Return a dict copy of all counters."""
        return {
            "requests_sent": self.requests_sent,
            "responses_delivered": self.responses_delivered,
            "responses_dropped": self.responses_dropped,
            "notifications_posted": self.notifications_posted,
            "notifications_dropped": self.notifications_dropped,
            "transport_failures": self.transport_failures,
            "handler_failures": self.handler_failures,
            "unknown_kinds": self.unknown_kinds,
            "request_timeouts": self.request_timeouts,
        }


@dataclass
class Subscription:
    """Inbound notification listener for one peer."""

    peer_id: str
    predicate: Predicate
    callback: NotificationCallback
    _router: MessageRouter | None = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self._router is not None

    def cancel(self) -> None:
        router, self._router = self._router, None
        if router is not None:
            router._remove_subscription(self)


@dataclass
class _PendingRequest:
    source: str
    target: str
    kind: str
    future: asyncio.Future[Response]


def copy_payload(kind: MessageKind | str, payload: Any) -> Any:
    """Copy a payload across a context boundary via JSON.

    Raises PayloadSerializationError when the payload cannot be encoded.
    """
    if payload is None:
        return None
    try:
        return json.loads(json.dumps(payload))
    except (TypeError, ValueError) as exc:
        raise PayloadSerializationError(kind_name(kind), str(exc)) from exc


def kind_is(*kinds: MessageKind) -> Predicate:
    """Predicate matching messages of any of ``kinds``."""
    wanted = {k.value for k in kinds}

    def _match(message: Message) -> bool:
        return kind_name(message.kind) in wanted

    return _match


class MessageRouter:
    """Routes requests, responses and notifications between peers.

    Peers must be registered from inside a running event loop, since
    registration starts the peer's dispatch task.
    """

    def __init__(
        self,
        queue_maxsize: int = 1000,
        event_callback: EventCallback | None = None,
    ) -> None:
        self._queue_maxsize = queue_maxsize
        self._event_callback = event_callback
        self._queues: dict[str, asyncio.Queue[Message]] = {}
        self._dispatchers: dict[str, asyncio.Task[None]] = {}
        self._handlers: dict[str, dict[MessageKind, RequestHandler]] = {}
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._pending: dict[str, _PendingRequest] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False
        self.metrics = RouterMetrics()

    # ── Peers ──

    def register_peer(self, peer_id: str) -> None:
        """Create the peer's inbound queue and start its dispatcher."""
        if self._closed:
            raise RuntimeError("router is closed")
        if peer_id in self._queues:
            logger.warning("Peer already registered: %s", peer_id)
            return
        self._queues[peer_id] = asyncio.Queue(maxsize=self._queue_maxsize)
        self._handlers.setdefault(peer_id, {})
        self._dispatchers[peer_id] = asyncio.get_running_loop().create_task(
            self._dispatch_loop(peer_id), name=f"dispatch:{peer_id}",
        )
        logger.info("Peer registered: %s", peer_id)

    def unregister_peer(self, peer_id: str) -> None:
        """Tear a peer down. Requests in flight to or from it fail."""
        dispatcher = self._dispatchers.pop(peer_id, None)
        if dispatcher is not None:
            dispatcher.cancel()
        self._queues.pop(peer_id, None)
        self._handlers.pop(peer_id, None)
        for sub in self._subscriptions.pop(peer_id, []):
            sub._router = None
        for correlation_id, pending in list(self._pending.items()):
            if pending.target == peer_id or pending.source == peer_id:
                self._settle(
                    correlation_id,
                    Response.fail(f"Peer {peer_id} disconnected before responding."),
                )
                self.metrics.transport_failures += 1
        logger.info("Peer unregistered: %s", peer_id)

    def is_registered(self, peer_id: str) -> bool:
        return peer_id in self._queues

    @property
    def peers(self) -> list[str]:
        return list(self._queues)

    # ── Inbound wiring ──

    def register_handler(
        self,
        peer_id: str,
        kind: MessageKind,
        handler: RequestHandler,
    ) -> None:
        """Route requests of ``kind`` addressed to ``peer_id`` to ``handler``."""
        handlers = self._handlers.setdefault(peer_id, {})
        if kind in handlers:
            logger.warning("Replacing %s handler for %s", kind.value, peer_id)
        handlers[kind] = handler

    def on_receive(
        self,
        peer_id: str,
        predicate: Predicate,
        callback: NotificationCallback,
    ) -> Subscription:
        """Subscribe ``callback`` to notifications for ``peer_id``.

        Plain callbacks run inline in dispatch order. Coroutine callbacks
        are started as tasks so they may issue requests of their own.
        """
        sub = Subscription(
            peer_id=peer_id, predicate=predicate, callback=callback, _router=self,
        )
        self._subscriptions.setdefault(peer_id, []).append(sub)
        return sub

    def _remove_subscription(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.peer_id)
        if subs and sub in subs:
            subs.remove(sub)

    # ── Outbound ──

    async def request(
        self,
        source: str,
        target: str,
        kind: MessageKind | str,
        payload: Any = None,
        timeout: float | None = None,
    ) -> Response:
        """Send a request and await its single Response.

        Never raises for transport problems; they come back as
        ``Response(success=False, error=...)``. ``timeout`` (seconds)
        bounds the wait; None or <= 0 waits indefinitely.
        """
        name = kind_name(kind)
        if self._closed:
            return self._transport_failure(name, target, "Transport closed.")
        if source not in self._queues:
            return self._transport_failure(
                name, target, f"Source {source} is not registered."
            )
        try:
            body = copy_payload(name, payload)
        except PayloadSerializationError as exc:
            return self._transport_failure(name, target, str(exc))

        queue = self._queues.get(target)
        if queue is None:
            return self._transport_failure(name, target, NO_RECEIVER_ERROR)

        message = Message(kind=kind, payload=body, source=source, target=target)
        message.correlation_id = message.message_id
        future: asyncio.Future[Response] = asyncio.get_running_loop().create_future()
        self._pending[message.correlation_id] = _PendingRequest(
            source=source, target=target, kind=name, future=future,
        )
        try:
            queue.put_nowait(message)
        except asyncio.QueueFull:
            self._pending.pop(message.correlation_id, None)
            return self._transport_failure(
                name, target, f"Message queue for {target} is full."
            )
        self.metrics.requests_sent += 1
        logger.debug(
            "Request sent: %s -> %s (kind=%s, id=%s)",
            source, target, name, message.message_id[:8],
        )
        await fire_event(self._event_callback, {
            "event": "request_sent",
            "source": source,
            "target": target,
            "kind": name,
        })

        try:
            if timeout is not None and timeout > 0:
                return await asyncio.wait_for(future, timeout=timeout)
            return await future
        except asyncio.TimeoutError:
            self.metrics.request_timeouts += 1
            logger.warning(
                "Request timed out: %s -> %s (kind=%s) after %ss",
                source, target, name, timeout,
            )
            return Response.fail(f"timeout after {timeout}s")
        finally:
            self._pending.pop(message.correlation_id, None)

    async def post(
        self,
        source: str,
        target: str,
        kind: MessageKind | str,
        payload: Any = None,
    ) -> bool:
        """Fire-and-forget notification. Returns whether it was queued."""
        name = kind_name(kind)
        queue = self._queues.get(target)
        if queue is None or self._closed:
            self.metrics.notifications_dropped += 1
            logger.debug("Notification %s dropped: no peer %s", name, target)
            return False
        try:
            body = copy_payload(name, payload)
        except PayloadSerializationError:
            self.metrics.notifications_dropped += 1
            logger.error("Notification %s to %s dropped: payload not serializable", name, target)
            return False
        message = Message(kind=kind, payload=body, source=source, target=target)
        try:
            queue.put_nowait(message)
        except asyncio.QueueFull:
            self.metrics.notifications_dropped += 1
            logger.error(
                "Notification %s to %s dropped: queue full (size=%d)",
                name, target, queue.qsize(),
            )
            return False
        self.metrics.notifications_posted += 1
        await fire_event(self._event_callback, {
            "event": "notification_posted",
            "source": source,
            "target": target,
            "kind": name,
        })
        return True

    async def broadcast(
        self,
        source: str,
        kind: MessageKind | str,
        payload: Any = None,
        prefix: str | None = None,
    ) -> int:
        """Post to every registered peer except ``source`` (optionally by id prefix)."""
        delivered = 0
        for peer_id in list(self._queues):
            if peer_id == source:
                continue
            if prefix is not None and not peer_id.startswith(prefix):
                continue
            if await self.post(source, peer_id, kind, payload):
                delivered += 1
        return delivered

    # ── Dispatch ──

    async def _dispatch_loop(self, peer_id: str) -> None:
        queue = self._queues[peer_id]
        while True:
            try:
                message = await queue.get()
            except asyncio.CancelledError:
                return
            try:
                if message.is_response:
                    self._deliver_response(message)
                    await fire_event(self._event_callback, {
                        "event": "response_delivered",
                        "source": message.source,
                        "target": message.target,
                        "kind": kind_name(message.kind),
                        "success": message.response.success,
                        "error": message.response.error,
                    })
                elif message.is_request:
                    self._spawn(self._handle_request(peer_id, message))
                else:
                    self._deliver_notification(peer_id, message)
            except Exception:
                logger.exception(
                    "Dispatch error in %s for %s", peer_id, kind_name(message.kind)
                )

    async def _handle_request(self, peer_id: str, message: Message) -> None:
        response = await self._invoke_handler(peer_id, message)
        try:
            body = copy_payload(message.kind, response.payload)
            response = Response(success=response.success, payload=body, error=response.error)
        except PayloadSerializationError as exc:
            self.metrics.transport_failures += 1
            response = Response.fail(str(exc))
        self._reply(message, response)

    async def _invoke_handler(self, peer_id: str, message: Message) -> Response:
        name = kind_name(message.kind)
        kind = parse_kind(message.kind)
        if kind is None:
            self.metrics.unknown_kinds += 1
            logger.warning("Unrecognized message kind in %s: %s", peer_id, name)
            return Response.fail(f"Unrecognized message kind: {name}")
        handler = self._handlers.get(peer_id, {}).get(kind)
        if handler is None:
            self.metrics.unknown_kinds += 1
            logger.warning("Unhandled message kind in %s: %s", peer_id, name)
            return Response.fail(f"Unhandled message kind in {peer_id}: {name}")
        try:
            response = await handler(message)
        except Exception as exc:
            self.metrics.handler_failures += 1
            logger.exception("Handler for %s in %s raised", name, peer_id)
            return Response.fail(str(exc) or type(exc).__name__)
        if not isinstance(response, Response):
            self.metrics.handler_failures += 1
            logger.error(
                "Handler for %s in %s returned %s instead of Response",
                name, peer_id, type(response).__name__,
            )
            return Response.fail(f"Handler for {name} returned no response.")
        return response

    def _reply(self, request: Message, response: Response) -> None:
        correlation_id = request.correlation_id
        if correlation_id is None or correlation_id not in self._pending:
            self.metrics.responses_dropped += 1
            logger.debug(
                "Late response for %s dropped (caller gave up)",
                kind_name(request.kind),
            )
            return
        reply = Message(
            kind=request.kind,
            source=request.target,
            target=request.source,
            correlation_id=correlation_id,
            response=response,
        )
        queue = self._queues.get(request.source)
        if queue is None:
            self._settle(correlation_id, response)
            return
        try:
            queue.put_nowait(reply)
        except asyncio.QueueFull:
            # Resolve directly rather than leave the caller hanging.
            self._settle(correlation_id, response)

    def _deliver_response(self, message: Message) -> None:
        assert message.correlation_id is not None and message.response is not None
        if self._settle(message.correlation_id, message.response):
            self.metrics.responses_delivered += 1
        else:
            self.metrics.responses_dropped += 1

    def _settle(self, correlation_id: str, response: Response) -> bool:
        """Single resolution point for a request future."""
        pending = self._pending.pop(correlation_id, None)
        if pending is None or pending.future.done():
            return False
        pending.future.set_result(response)
        return True

    def _deliver_notification(self, peer_id: str, message: Message) -> None:
        for sub in list(self._subscriptions.get(peer_id, [])):
            try:
                if not sub.predicate(message):
                    continue
                result = sub.callback(message)
                if inspect.isawaitable(result):
                    self._spawn(result)
            except Exception:
                logger.exception(
                    "Notification callback failed in %s for %s",
                    peer_id, kind_name(message.kind),
                )

    def _spawn(self, awaitable: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task failed: %r", exc)

    def _transport_failure(self, kind: str, target: str, reason: str) -> Response:
        self.metrics.transport_failures += 1
        logger.error("Transport failure for %s -> %s: %s", kind, target, reason)
        return Response.fail(reason)

    # ── Shutdown ──

    async def close(self) -> None:
        """Stop all dispatchers and fail every request still in flight."""
        self._closed = True
        for correlation_id in list(self._pending):
            self._settle(correlation_id, Response.fail("Transport closed."))
        tasks = list(self._dispatchers.values()) + list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._dispatchers.clear()
        self._tasks.clear()
        self._queues.clear()
        logger.info("Router closed")

    @property
    def pending_count(self) -> int:
        return len(self._pending)
